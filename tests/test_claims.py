import threading

import pytest

from reunite.domain.errors import ConcurrencyConflict, NotFound, Unauthorized, ValidationError
from reunite.services.claims import ClaimStateMachine

from conftest import T0, hours, race


@pytest.fixture
def pair(stores, make_report):
    lost = stores.reports.add(make_report(kind="lost", owner_id="alice"))
    found = stores.reports.add(make_report(kind="found", owner_id="bob", occurred_at=T0 + hours(3)))
    return lost, found


@pytest.fixture
def match(engine, pair):
    return engine.matcher.match_new_report(pair[1])[0]


def _types(stores, user_id):
    return [n.type for n in stores.notifications.list_for_user(user_id)]


def test_confirmed_only_after_both_owners(engine, stores, pair, match):
    lost, found = pair
    m = engine.claims.confirm(match.id, "alice", proof_details="scratch on the back")
    assert m.status == "pending"
    assert m.confirmed_by_lost_user and not m.confirmed_by_found_user
    assert m.proof_details == "scratch on the back"
    assert "confirmation_pending" in _types(stores, "bob")
    assert stores.reports.get(lost.id).status == "unresolved"

    m = engine.claims.confirm(match.id, "bob")
    assert m.status == "confirmed"
    assert m.confirmed_by_lost_user and m.confirmed_by_found_user
    assert stores.reports.get(lost.id).status == "matched"
    assert stores.reports.get(found.id).status == "matched"
    assert "match_confirmed" in _types(stores, "alice")
    assert "match_confirmed" in _types(stores, "bob")


def test_unauthorized_confirm_leaves_flags(engine, stores, match):
    with pytest.raises(Unauthorized):
        engine.claims.confirm(match.id, "mallory")
    stored = stores.matches.get(match.id)
    assert not stored.confirmed_by_lost_user
    assert not stored.confirmed_by_found_user
    assert stored.version == match.version


def test_reconfirm_is_a_noop(engine, stores, match):
    first = engine.claims.confirm(match.id, "alice")
    pending_before = len(stores.notifications.list_for_user("bob"))
    again = engine.claims.confirm(match.id, "alice")
    assert again.version == first.version
    assert len(stores.notifications.list_for_user("bob")) == pending_before


def test_confirm_after_resolution_is_invalid(engine, match):
    engine.claims.reject(match.id, "bob")
    with pytest.raises(ValidationError):
        engine.claims.confirm(match.id, "alice")


def test_reject_notifies_other_party_and_keeps_reports(engine, stores, pair, match):
    lost, _ = pair
    m = engine.claims.reject(match.id, "alice")
    assert m.status == "rejected"
    assert "match_rejected" in _types(stores, "bob")
    assert stores.reports.get(lost.id).status == "unresolved"
    # second reject is a no-op
    assert engine.claims.reject(match.id, "bob").version == m.version


def test_reject_confirmed_match_is_invalid(engine, match):
    engine.claims.confirm(match.id, "alice")
    engine.claims.confirm(match.id, "bob")
    with pytest.raises(ValidationError):
        engine.claims.reject(match.id, "alice")


def test_second_match_cannot_confirm_a_matched_report(engine, stores, make_report, pair, match):
    lost, _ = pair
    other = stores.reports.add(make_report(kind="found", owner_id="dave", occurred_at=T0 + hours(4)))
    rival = engine.claims.claim(lost.id, other.id, "alice")
    engine.claims.confirm(match.id, "alice")
    engine.claims.confirm(match.id, "bob")

    engine.claims.confirm(rival.id, "alice")
    with pytest.raises(ValidationError):
        engine.claims.confirm(rival.id, "dave")
    assert stores.matches.get(rival.id).status == "pending"


def test_sibling_matches_confirming_together_leave_one_confirmed(engine, stores, make_report, pair, match,
                                                                 monkeypatch):
    lost, found = pair
    other = stores.reports.add(make_report(kind="found", owner_id="dave", occurred_at=T0 + hours(4)))
    rival = engine.claims.claim(lost.id, other.id, "alice")
    engine.claims.confirm(match.id, "alice")
    engine.claims.confirm(rival.id, "alice")

    # both final confirmations reach the store before either writes
    real_commit = stores.matches.commit
    gate = threading.Barrier(2, timeout=5)

    def gated_commit(m, expected_version, report_statuses=None, **kw):
        if report_statuses:
            gate.wait()
        return real_commit(m, expected_version, report_statuses, **kw)

    monkeypatch.setattr(stores.matches, "commit", gated_commit)
    results, errors = race(lambda: engine.claims.confirm(match.id, "bob"),
                           lambda: engine.claims.confirm(rival.id, "dave"))

    statuses = sorted(stores.matches.get(mid).status for mid in (match.id, rival.id))
    assert statuses == ["confirmed", "pending"]
    assert len(results) == 1
    assert len(errors) == 1 and isinstance(errors[0], ValidationError)
    assert stores.reports.get(lost.id).status == "matched"
    winner = results[0]
    loser_found = other.id if winner.found_report_id == found.id else found.id
    assert stores.reports.get(loser_found).status == "unresolved"


def test_both_owners_confirming_at_once(engine, stores, pair, match):
    lost, found = pair
    results, errors = race(lambda: engine.claims.confirm(match.id, "alice"),
                           lambda: engine.claims.confirm(match.id, "bob"))
    assert errors == []
    stored = stores.matches.get(match.id)
    assert stored.status == "confirmed"
    assert stored.confirmed_by_lost_user and stored.confirmed_by_found_user
    assert stored.version == match.version + 2
    assert stores.reports.get(lost.id).status == "matched"
    assert stores.reports.get(found.id).status == "matched"


def test_confirms_from_separate_workers_resolve_by_version(engine, stores, pair, match, monkeypatch):
    # a second state machine has its own locks, like another API worker
    other_worker = ClaimStateMachine(stores, engine.claims.sink)
    real_commit = stores.matches.commit
    gate = threading.Barrier(2, timeout=5)
    local = threading.local()

    def gated_commit(*args, **kw):
        if not getattr(local, "passed", False):
            local.passed = True
            gate.wait()
        return real_commit(*args, **kw)

    monkeypatch.setattr(stores.matches, "commit", gated_commit)
    results, errors = race(lambda: engine.claims.confirm(match.id, "alice"),
                           lambda: other_worker.confirm(match.id, "bob"))
    assert errors == []
    stored = stores.matches.get(match.id)
    assert stored.status == "confirmed"
    assert stored.confirmed_by_lost_user and stored.confirmed_by_found_user


def test_version_conflict_is_retried_once(engine, stores, match, monkeypatch):
    real_commit = stores.matches.commit
    calls = {"n": 0}

    def conflict_once(m, expected_version, report_statuses=None, **kw):
        calls["n"] += 1
        if calls["n"] == 1:
            raise ConcurrencyConflict("stale")
        return real_commit(m, expected_version, report_statuses, **kw)

    monkeypatch.setattr(stores.matches, "commit", conflict_once)
    assert engine.claims.confirm(match.id, "alice").confirmed_by_lost_user
    assert calls["n"] == 2


def test_persistent_conflict_surfaces(engine, stores, match, monkeypatch):
    def always_conflict(*_, **__):
        raise ConcurrencyConflict("stale")

    monkeypatch.setattr(stores.matches, "commit", always_conflict)
    with pytest.raises(ConcurrencyConflict):
        engine.claims.confirm(match.id, "alice")


def test_claim_creates_scored_match_and_notifies_finder(engine, stores, pair):
    lost, found = pair
    m = engine.claims.claim(lost.id, found.id, "alice")
    assert m.origin == "claim"
    assert m.status == "pending"
    assert 0 <= m.confidence <= 100
    assert _types(stores, "bob") == ["claim_received"]
    # same pair again returns the existing match
    assert engine.claims.claim(lost.id, found.id, "alice").id == m.id


def test_claim_returns_existing_auto_match(engine, pair, match):
    lost, found = pair
    assert engine.claims.claim(lost.id, found.id, "alice").id == match.id


def test_claim_rules(engine, stores, make_report, pair):
    lost, found = pair
    with pytest.raises(Unauthorized):
        engine.claims.claim(lost.id, found.id, "bob")
    with pytest.raises(ValidationError):
        engine.claims.claim(found.id, lost.id, "alice")
    with pytest.raises(NotFound):
        engine.claims.claim(lost.id, "missing", "alice")
    own_found = stores.reports.add(make_report(kind="found", owner_id="alice"))
    with pytest.raises(ValidationError):
        engine.claims.claim(lost.id, own_found.id, "alice")


def test_match_status_and_listing(engine, pair, match):
    lost, _ = pair
    status = engine.claims.match_status(match.id, "bob")
    assert status["user_role"] == "found"
    assert status["both_confirmed"] is False
    assert status["is_resolved"] is False
    with pytest.raises(Unauthorized):
        engine.claims.match_status(match.id, "mallory")
    with pytest.raises(NotFound):
        engine.claims.match_status("nope", "bob")

    assert [m.id for m in engine.claims.matches_for_report(lost.id, "alice")] == [match.id]
    with pytest.raises(Unauthorized):
        engine.claims.matches_for_report(lost.id, "bob")
