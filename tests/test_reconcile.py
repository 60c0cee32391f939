import logging

from feedsync.adapters.repos.properties import PropertyRepository
from feedsync.models import PropertyClassification
from feedsync.service_layer.reconcile import (
    ReconcileAction,
    ReconciliationEngine,
    classification_terms,
    decide_action,
)
from feedsync.services.normalize import normalize


def _mapping(last_updated="2024-03-01 10:00:00", **extra):
    return {
        "id": "3001",
        "name": "Mill Yard",
        "last_updated": last_updated,
        "county": "Greater Manchester",
        "types": ["Industrial", "12"],
        "availabilities": ["To Let", "To Let"],
        **extra,
    }


async def _reconcile(session_maker, mapping, force_update=False):
    async with session_maker() as session:
        engine = ReconciliationEngine(PropertyRepository(session))
        record = normalize(mapping)
        res = await engine.reconcile(record.meta.external_id, record, mapping, force_update=force_update)
        await session.commit()
        return res


async def test_insert_then_skip_then_update(async_session_maker):
    first = await _reconcile(async_session_maker, _mapping())
    assert first.action is ReconcileAction.insert

    same = await _reconcile(async_session_maker, _mapping())
    assert same.action is ReconcileAction.skip
    assert same.stored_id == first.stored_id

    # same instant, different string format: still not newer
    iso = await _reconcile(async_session_maker, _mapping(last_updated="2024-03-01T10:00:00+00:00"))
    assert iso.action is ReconcileAction.skip

    older = await _reconcile(async_session_maker, _mapping(last_updated="2024-02-01 10:00:00"))
    assert older.action is ReconcileAction.skip

    newer = await _reconcile(async_session_maker, _mapping(last_updated="2024-04-01 10:00:00"))
    assert newer.action is ReconcileAction.update
    assert newer.stored_id == first.stored_id


async def test_force_update_overrides_timestamps(async_session_maker):
    await _reconcile(async_session_maker, _mapping())
    forced = await _reconcile(async_session_maker, _mapping(), force_update=True)
    assert forced.action is ReconcileAction.update


async def test_unparseable_timestamp_means_update(async_session_maker):
    await _reconcile(async_session_maker, _mapping())
    res = await _reconcile(async_session_maker, _mapping(last_updated="yesterday-ish"))
    assert res.action is ReconcileAction.update


def test_decide_action_without_stored_row():
    assert decide_action(None, normalize(_mapping())) is ReconcileAction.insert


def test_classification_terms_drop_numeric_ids():
    record = normalize(_mapping())
    terms = classification_terms(record, {})
    assert terms == {
        "property_type": ["Industrial"],
        "location": ["Greater Manchester"],
        "availability": ["To Let"],
    }


def test_classification_falls_back_to_property_type():
    mapping = _mapping(types=[], property_type="Retail")
    assert classification_terms(normalize(mapping), mapping)["property_type"] == ["Retail"]


async def test_classification_failure_keeps_upsert(async_session_maker, monkeypatch, caplog):
    async def boom(self, prop, terms):
        raise RuntimeError("taxonomy store down")

    monkeypatch.setattr(PropertyRepository, "set_classifications", boom)

    with caplog.at_level(logging.ERROR):
        res = await _reconcile(async_session_maker, _mapping())

    assert res.action is ReconcileAction.insert
    assert "classification failed for 3001" in caplog.text

    async with async_session_maker() as session:
        repo = PropertyRepository(session)
        assert await repo.find_by_external_id("3001") is not None
        assert await session.get(PropertyClassification, 1) is None


async def test_stored_newer_than_incoming_is_skipped_unless_forced(async_session_maker):
    await _reconcile(async_session_maker, _mapping(last_updated="2024-01-02"))

    stale = await _reconcile(async_session_maker, _mapping(last_updated="2024-01-01"))
    assert stale.action is ReconcileAction.skip

    forced = await _reconcile(async_session_maker, _mapping(last_updated="2024-01-01"), force_update=True)
    assert forced.action is ReconcileAction.update
