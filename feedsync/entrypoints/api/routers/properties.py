# feedsync/entrypoints/api/routers/properties.py
from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_image_queue, require_api_key
from ....adapters.repos.properties import PropertyRepository
from ....db import get_session
from ....schemas import ContactOut, MediaOut, PropertyDetailOut, PropertyOut, PropertyPage, UnitOut
from ....service_layer.images import ImageQueueManager

router = APIRouter(tags=["properties"])


@router.get("/properties", response_model=PropertyPage, dependencies=[Depends(require_api_key)])
async def list_properties(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    status: str | None = Query(None),
    property_type: str | None = Query(None, alias="type", description="Exact property_type classification term"),
    session: AsyncSession = Depends(get_session),
) -> PropertyPage:
    repo = PropertyRepository(session)
    rows = await repo.list(limit=limit, offset=offset, status=status, property_type=property_type)
    total = await repo.count(status=status, property_type=property_type)
    return PropertyPage(
        items=[PropertyOut.model_validate(r) for r in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/properties/{external_id}", response_model=PropertyDetailOut, dependencies=[Depends(require_api_key)])
async def get_property(external_id: str, session: AsyncSession = Depends(get_session)) -> PropertyDetailOut:
    repo = PropertyRepository(session)
    prop = await repo.find_by_external_id(external_id)
    if prop is None:
        raise HTTPException(status_code=404, detail="Property not found")

    children = await repo.children(prop)
    classifications: dict[str, list[str]] = {}
    for c in children["classifications"]:
        classifications.setdefault(c.taxonomy, []).append(c.term)

    base = PropertyOut.model_validate(prop).model_dump()
    return PropertyDetailOut(
        **base,
        units=[UnitOut.model_validate(u) for u in children["units"]],
        media=[MediaOut.model_validate(m) for m in children["media"]],
        contacts=[ContactOut.model_validate(c) for c in children["contacts"]],
        classifications=classifications,
        record=json.loads(prop.normalized_json or "{}"),
    )


@router.get("/properties/{external_id}/images", dependencies=[Depends(require_api_key)])
async def property_images(
    external_id: str,
    session: AsyncSession = Depends(get_session),
    queue: ImageQueueManager = Depends(get_image_queue),
) -> dict[str, Any]:
    if await PropertyRepository(session).find_by_external_id(external_id) is None:
        raise HTTPException(status_code=404, detail="Property not found")
    # end the read before the queue opens its own sessions
    await session.commit()
    return await queue.entity_status(external_id)


@router.delete("/properties/{external_id}", dependencies=[Depends(require_api_key)])
async def delete_property(external_id: str, session: AsyncSession = Depends(get_session)) -> dict[str, Any]:
    removed = await PropertyRepository(session).remove(external_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Property not found")
    await session.commit()
    return {"removed": 1, "external_id": external_id}


@router.delete("/properties", dependencies=[Depends(require_api_key)])
async def delete_all_properties(
    confirm: bool = Query(False, description="Must be true; removes every stored property"),
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    if not confirm:
        raise HTTPException(status_code=400, detail="Pass confirm=true to delete all properties")
    removed = await PropertyRepository(session).remove_all()
    await session.commit()
    return {"removed": removed}
