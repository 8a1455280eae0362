import base64
import threading

import pytest

from reunite.domain.errors import ConcurrencyConflict, DuplicateSubmission, NotFound, Unauthorized, ValidationError
from reunite.services.report_service import NO_EMBEDDING_WARNING

from conftest import T0, UBC, hours, race


def _payload(kind="lost", **overrides):
    data = {
        "kind": kind,
        "title": "Black iPhone 13",
        "description": "black iphone with a cracked screen protector and blue case",
        "category": "electronics",
        "attributes": {"color": "black"},
        "location": UBC,
        "occurred_at": T0.isoformat(),
    }
    data.update(overrides)
    return data


def test_create_report_persists_and_embeds(engine, stores):
    result = engine.reports.create_report("alice", _payload())
    report = result.report
    assert report.status == "unresolved"
    assert report.owner_id == "alice"
    assert report.text_embedding and len(report.text_embedding) == 64
    assert report.location.latitude == pytest.approx(49.2606)
    assert stores.reports.get(report.id) is not None
    assert result.matches == [] and result.warnings == []


def test_create_report_matches_existing_opposite_report(engine, stores):
    lost = engine.reports.create_report("alice", _payload()).report
    result = engine.reports.create_report("bob", _payload("found", occurred_at=(T0 + hours(1)).isoformat()))
    assert len(result.matches) == 1
    assert result.matches[0].lost_report_id == lost.id
    assert result.matches[0].confidence >= 90


def test_location_json_string_is_normalized(engine):
    payload = _payload(location='{"lat": 49.2606, "lng": -123.246}')
    report = engine.reports.create_report("alice", payload).report
    assert report.location.longitude == pytest.approx(-123.246)


def test_duplicate_submission_is_rejected_without_side_effects(engine, stores):
    engine.reports.create_report("alice", _payload())
    with pytest.raises(DuplicateSubmission):
        engine.reports.create_report("alice", _payload())
    assert len(stores.reports.query(owner_id="alice")) == 1


def test_racing_duplicate_submissions_admit_exactly_one(engine, stores, embedder, monkeypatch):
    # both submissions finish embedding before either reaches the guard
    gate = threading.Barrier(2, timeout=5)
    real_embed = embedder.embed_text

    def embed_then_wait(text):
        vec = real_embed(text)
        gate.wait()
        return vec

    monkeypatch.setattr(embedder, "embed_text", embed_then_wait)
    results, errors = race(lambda: engine.reports.create_report("alice", _payload()),
                           lambda: engine.reports.create_report("alice", _payload()))

    assert len(results) == 1
    assert len(errors) == 1 and isinstance(errors[0], DuplicateSubmission)
    assert len(stores.reports.query(owner_id="alice")) == 1


def test_stale_status_edit_is_a_conflict(engine, stores, monkeypatch):
    report = engine.reports.create_report("alice", _payload()).report
    real_get = stores.reports.get

    def get_then_confirm(report_id):
        # a confirmation lands between the read and the write
        snapshot = real_get(report_id)
        stores.reports.update_fields(report_id, {"status": "matched"})
        return snapshot

    monkeypatch.setattr(stores.reports, "get", get_then_confirm)
    with pytest.raises(ConcurrencyConflict):
        engine.reports.update_status(report.id, "alice", "found")
    monkeypatch.undo()
    assert stores.reports.get(report.id).status == "matched"


def test_same_text_in_other_category_is_not_a_duplicate(engine, stores):
    engine.reports.create_report("alice", _payload())
    engine.reports.create_report("alice", _payload(category="phones"))
    assert len(stores.reports.query(owner_id="alice")) == 2


@pytest.mark.parametrize("overrides", [
    {"kind": "stolen"},
    {"title": "   "},
    {"description": ""},
    {"category": ""},
    {"location": {"latitude": 123, "longitude": 0}},
])
def test_invalid_payload(engine, overrides):
    with pytest.raises(ValidationError):
        engine.reports.create_report("alice", _payload(**overrides))


def test_missing_owner_is_invalid(engine):
    with pytest.raises(ValidationError):
        engine.reports.create_report(" ", _payload())


def test_unembeddable_text_still_creates_report_with_warning(engine, stores):
    result = engine.reports.create_report("alice", _payload(title="!!!", description="???"))
    assert result.report.text_embedding is None
    assert NO_EMBEDDING_WARNING in result.warnings
    assert stores.reports.get(result.report.id) is not None


def test_images_are_embedded_and_bad_ones_skipped(engine):
    good = base64.b64encode(b"\x89PNG fake image bytes").decode()
    result = engine.reports.create_report("alice", _payload(images=[good, "not base64!!"]))
    assert len(result.report.image_embeddings) == 1
    assert len(result.warnings) == 1


def test_get_and_list_are_owner_scoped(engine):
    mine = engine.reports.create_report("alice", _payload()).report
    engine.reports.create_report("alice", _payload("found", category="keys", title="Keys",
                                                   description="bundle of keys"))
    engine.reports.create_report("bob", _payload(category="bags", title="Bag", description="red bag"))

    assert engine.reports.get_report(mine.id, "alice").id == mine.id
    with pytest.raises(Unauthorized):
        engine.reports.get_report(mine.id, "bob")
    with pytest.raises(NotFound):
        engine.reports.get_report("missing", "alice")

    assert len(engine.reports.list_reports("alice")) == 2
    assert [r.id for r in engine.reports.list_reports("alice", kind="lost")] == [mine.id]
    assert engine.reports.list_reports("alice", status="matched") == []
    with pytest.raises(ValidationError):
        engine.reports.list_reports("alice", status="lost")


def test_status_moves_forward_freely(engine):
    report = engine.reports.create_report("alice", _payload()).report
    assert engine.reports.update_status(report.id, "alice", "found").status == "found"
    assert engine.reports.update_status(report.id, "alice", "returned").status == "returned"
    with pytest.raises(Unauthorized):
        engine.reports.update_status(report.id, "bob", "unresolved")
    with pytest.raises(ValidationError):
        engine.reports.update_status(report.id, "alice", "lost")


def test_backward_status_blocked_by_active_match(engine):
    lost = engine.reports.create_report("alice", _payload()).report
    engine.reports.update_status(lost.id, "alice", "found")
    match = engine.reports.create_report("bob", _payload("found")).matches[0]
    with pytest.raises(ValidationError):
        engine.reports.update_status(lost.id, "alice", "unresolved")
    engine.claims.reject(match.id, "alice")
    assert engine.reports.update_status(lost.id, "alice", "unresolved").status == "unresolved"


def test_delete_refused_while_pending_then_cascades(engine, stores):
    lost = engine.reports.create_report("alice", _payload()).report
    match = engine.reports.create_report("bob", _payload("found")).matches[0]
    with pytest.raises(ValidationError):
        engine.reports.delete_report(lost.id, "alice")

    engine.claims.reject(match.id, "bob")
    assert engine.reports.delete_report(lost.id, "alice") == 1
    assert stores.reports.get(lost.id) is None
    assert stores.matches.get(match.id) is None
