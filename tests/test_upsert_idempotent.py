import json

from sqlalchemy import func, select

from feedsync.adapters.repos.properties import PropertyRepository
from feedsync.models import MediaKind, PropertyUnit, StoredProperty
from feedsync.services.normalize import normalize

MAPPING = {
    "id": "2001",
    "name": "Canal Wharf",
    "last_updated": "2024-03-01T10:00:00Z",
    "status": "Available",
    "property_type": "Office",
    "postcode": "LS11 5PS",
    "size_min": 1000,
    "size_max": 4000,
    "price_min": 18,
    "price_max": 22,
    "price_type": "per_sqft",
    "floor_units": [
        {"floor": "Ground", "size_sqft": "1000"},
        {"floor": "Ground", "size_sqft": "1000"},
        {"floor": "First", "size_sqft": "4000"},
    ],
    "images": ["https://img.example.com/a.jpg", "https://img.example.com/b.jpg"],
    "files": [{"url": "https://cdn.example.com/b.pdf", "type": "11"}],
}


async def test_upsert_property_idempotent(async_session_maker):
    record = normalize(MAPPING)

    async with async_session_maker() as session:
        p1 = await PropertyRepository(session).upsert(record, MAPPING)
        await session.commit()

    async with async_session_maker() as session:
        p2 = await PropertyRepository(session).upsert(normalize(MAPPING), MAPPING)
        await session.commit()

    assert p1.id == p2.id

    async with async_session_maker() as session:
        assert (await session.execute(select(func.count()).select_from(StoredProperty))).scalar_one() == 1
        units = (await session.execute(select(PropertyUnit))).scalars().all()
        # duplicate fingerprints collapse; re-import does not duplicate children
        assert len(units) == 2


async def test_upsert_writes_denormalized_columns(async_session_maker):
    async with async_session_maker() as session:
        repo = PropertyRepository(session)
        prop = await repo.upsert(normalize(MAPPING), MAPPING)
        await session.commit()

        assert prop.title == "Canal Wharf"
        assert prop.slug == "canal-wharf"
        assert prop.outward_postcode == "LS11"
        assert (prop.size_min, prop.size_max) == (1000, 4000)
        assert prop.price_type == "per_sqft"
        assert prop.last_modified is not None and prop.last_modified.tzinfo is None
        assert prop.last_modified_raw == "2024-03-01T10:00:00Z"
        assert json.loads(prop.normalized_json)["meta"]["imported_at"] is not None
        assert json.loads(prop.original_json)["id"] == "2001"

        children = await repo.children(prop)
        assert [m.kind for m in children["media"]] == [MediaKind.image, MediaKind.image, MediaKind.brochure]


async def test_classifications_replace_per_taxonomy(async_session_maker):
    async with async_session_maker() as session:
        repo = PropertyRepository(session)
        prop = await repo.upsert(normalize(MAPPING), MAPPING)
        await repo.set_classifications(prop, {"property_type": ["Office", "Office"], "location": ["Leeds"]})
        await repo.set_classifications(prop, {"property_type": ["Retail"]})
        await session.commit()

        terms = {(c.taxonomy, c.term) for c in (await repo.children(prop))["classifications"]}
        assert terms == {("property_type", "Retail"), ("location", "Leeds")}

        assert [p.external_id for p in await repo.list(property_type="Retail")] == ["2001"]
        assert await repo.count(property_type="Office") == 0


async def test_remove_and_remove_all(async_session_maker):
    async with async_session_maker() as session:
        repo = PropertyRepository(session)
        await repo.upsert(normalize(MAPPING), MAPPING)
        other = {**MAPPING, "id": "2002"}
        await repo.upsert(normalize(other), other)
        await session.commit()

        assert await repo.remove("2001") is True
        assert await repo.remove("2001") is False
        assert await repo.remove_all() == 1
        await session.commit()
        assert await repo.count() == 0
