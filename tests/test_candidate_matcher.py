import pytest

from reunite.domain.errors import EmbeddingUnavailable, NotFound, Unauthorized, ValidationError

from conftest import T0, hours


def _persist(stores, report):
    return stores.reports.add(report)


def test_new_found_report_matches_open_lost_report(engine, stores, make_report):
    lost = _persist(stores, make_report(kind="lost", owner_id="alice"))
    found = _persist(stores, make_report(kind="found", owner_id="bob", occurred_at=T0 + hours(2)))

    matches = engine.matcher.match_new_report(found)

    assert len(matches) == 1
    m = matches[0]
    assert (m.lost_report_id, m.found_report_id) == (lost.id, found.id)
    assert (m.lost_owner_id, m.found_owner_id) == ("alice", "bob")
    assert m.status == "pending" and m.origin == "auto"
    assert m.confidence >= 75

    notes = {n.user_id: n for n in stores.notifications.list_for_user("alice")}
    assert notes["alice"].type == "match_found"
    assert notes["alice"].payload["match_id"] == m.id
    assert stores.notifications.list_for_user("bob")[0].payload["report_id"] == found.id


def test_scan_is_idempotent_per_pair(engine, stores, make_report):
    _persist(stores, make_report(kind="lost", owner_id="alice"))
    found = _persist(stores, make_report(kind="found", owner_id="bob", occurred_at=T0 + hours(2)))
    assert len(engine.matcher.match_new_report(found)) == 1
    assert engine.matcher.match_new_report(found) == []
    assert engine.matcher.rescan_open_reports() == 0


def test_never_pairs_same_kind_or_same_owner(engine, stores, make_report):
    _persist(stores, make_report(kind="lost", owner_id="carol"))
    _persist(stores, make_report(kind="found", owner_id="alice"))
    lost = _persist(stores, make_report(kind="lost", owner_id="alice"))
    assert engine.matcher.match_new_report(lost) == []


def test_found_before_reporting_window_is_not_a_candidate(engine, stores, make_report):
    lost = _persist(stores, make_report(kind="lost", owner_id="alice"))
    early = _persist(stores, make_report(kind="found", owner_id="bob", occurred_at=T0 - hours(13)))
    inside = _persist(stores, make_report(kind="found", owner_id="dave", occurred_at=T0 - hours(11)))

    ids = {c.id for c in engine.matcher.open_candidates(lost)}
    assert inside.id in ids
    assert early.id not in ids
    assert engine.matcher.eligible(lost, inside)
    assert not engine.matcher.eligible(lost, early)


def test_closed_reports_are_not_candidates(engine, stores, make_report):
    _persist(stores, make_report(kind="lost", owner_id="alice", status="matched"))
    found = _persist(stores, make_report(kind="found", owner_id="bob"))
    assert engine.matcher.open_candidates(found) == []


def test_results_sorted_by_score_then_id(engine, stores, make_report):
    lost = _persist(stores, make_report(kind="lost", owner_id="alice"))
    near = _persist(stores, make_report(kind="found", owner_id="bob", occurred_at=T0 + hours(1)))
    later = _persist(stores, make_report(kind="found", owner_id="dave", occurred_at=T0 + hours(30)))
    twins = [_persist(stores, make_report(kind="found", owner_id=f"u{i}", occurred_at=T0 + hours(10)))
             for i in range(3)]

    scored = engine.matcher.score_candidates(lost, engine.matcher.open_candidates(lost))
    order = [c.id for c, _ in scored]
    assert order[0] == near.id
    assert order[-1] == later.id
    assert order[1:4] == sorted(t.id for t in twins)


def test_candidate_without_embedding_is_reembedded(engine, stores, make_report):
    lost = _persist(stores, make_report(kind="lost", owner_id="alice", embed=False))
    found = _persist(stores, make_report(kind="found", owner_id="bob"))
    assert len(engine.matcher.match_new_report(found)) == 1
    assert stores.reports.get(lost.id).text_embedding


def test_reembedding_keeps_a_status_change_made_meanwhile(engine, stores, embedder, make_report, monkeypatch):
    lost = _persist(stores, make_report(kind="lost", owner_id="alice", embed=False))
    found = _persist(stores, make_report(kind="found", owner_id="bob", occurred_at=T0 + hours(1)))
    real_embed = embedder.embed_text

    def embed_while_confirmed(text):
        stores.reports.update_fields(lost.id, {"status": "matched"})
        return real_embed(text)

    monkeypatch.setattr(embedder, "embed_text", embed_while_confirmed)
    assert engine.matcher.match_new_report(found) == []

    stored = stores.reports.get(lost.id)
    assert stored.status == "matched"
    assert stored.text_embedding


def test_candidate_deleted_while_embedding_is_skipped(engine, stores, embedder, make_report, monkeypatch):
    lost = _persist(stores, make_report(kind="lost", owner_id="alice", embed=False))
    found = _persist(stores, make_report(kind="found", owner_id="bob"))
    real_embed = embedder.embed_text

    def embed_while_deleted(text):
        stores.reports.delete(lost.id)
        return real_embed(text)

    monkeypatch.setattr(embedder, "embed_text", embed_while_deleted)
    assert engine.matcher.match_new_report(found) == []


def test_candidate_that_cannot_be_embedded_is_skipped(engine, stores, make_report):
    _persist(stores, make_report(kind="lost", owner_id="alice", title="!!", description="??", embed=False))
    found = _persist(stores, make_report(kind="found", owner_id="bob"))
    assert engine.matcher.match_new_report(found) == []


def test_scoring_failure_skips_only_that_candidate(engine, stores, make_report, monkeypatch):
    good = _persist(stores, make_report(kind="lost", owner_id="alice"))
    bad = _persist(stores, make_report(kind="lost", owner_id="carol"))
    found = _persist(stores, make_report(kind="found", owner_id="bob"))
    real_score = engine.scoring.score

    def flaky(lost, f):
        if lost.id == bad.id:
            raise RuntimeError("boom")
        return real_score(lost, f)

    monkeypatch.setattr(engine.scoring, "score", flaky)
    matches = engine.matcher.match_new_report(found)
    assert [m.lost_report_id for m in matches] == [good.id]


def test_report_without_embedding_raises(engine, stores, make_report):
    found = _persist(stores, make_report(kind="found", owner_id="bob", embed=False))
    with pytest.raises(EmbeddingUnavailable):
        engine.matcher.match_new_report(found)


def test_notification_failure_does_not_break_matching(engine, stores, make_report, monkeypatch):
    def broken(*_, **__):
        raise RuntimeError("sink down")

    monkeypatch.setattr(engine.matcher.sink, "notify", broken)
    _persist(stores, make_report(kind="lost", owner_id="alice"))
    found = _persist(stores, make_report(kind="found", owner_id="bob"))
    assert len(engine.matcher.match_new_report(found)) == 1


def test_potential_matches_ranks_without_persisting(engine, stores, make_report):
    lost = _persist(stores, make_report(kind="lost", owner_id="alice"))
    _persist(stores, make_report(kind="found", owner_id="bob", occurred_at=T0 + hours(1)))
    _persist(stores, make_report(kind="found", owner_id="dave", occurred_at=T0 + hours(40)))

    ranked = engine.matcher.potential_matches(lost.id, "alice")
    assert len(ranked) == 2
    assert ranked[0].score >= ranked[1].score
    assert stores.matches.for_report(lost.id) == []
    assert len(engine.matcher.potential_matches(lost.id, "alice", limit=1)) == 1


def test_potential_matches_access_rules(engine, stores, make_report):
    lost = _persist(stores, make_report(kind="lost", owner_id="alice"))
    found = _persist(stores, make_report(kind="found", owner_id="bob"))
    with pytest.raises(Unauthorized):
        engine.matcher.potential_matches(lost.id, "mallory")
    with pytest.raises(ValidationError):
        engine.matcher.potential_matches(found.id, "bob")
    with pytest.raises(NotFound):
        engine.matcher.potential_matches("missing", "alice")


def test_rescan_picks_up_new_pairs(engine, stores, make_report):
    _persist(stores, make_report(kind="lost", owner_id="alice"))
    _persist(stores, make_report(kind="found", owner_id="bob"))
    assert engine.matcher.rescan_open_reports() == 1
    assert engine.matcher.rescan_open_reports() == 0
