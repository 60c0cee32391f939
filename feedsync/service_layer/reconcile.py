# feedsync/service_layer/reconcile.py
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from ..adapters.repos.properties import PropertyRepository
from ..domain.parsing import parse_timestamp
from ..domain.records import NormalizedRecord
from ..errors import ClassificationError
from ..models import StoredProperty

log = logging.getLogger(__name__)


class ReconcileAction(str, enum.Enum):
    insert = "insert"
    update = "update"
    skip = "skip"


@dataclass(frozen=True)
class ReconcileResult:
    action: ReconcileAction
    stored_id: int | None = None


def decide_action(stored: StoredProperty | None, record: NormalizedRecord, force_update: bool = False) -> ReconcileAction:
    """
    insert when nothing is stored; skip only when both stamps parse and the stored
    one is not older; update otherwise (including force and unparseable stamps).
    """
    if stored is None:
        return ReconcileAction.insert
    if force_update:
        return ReconcileAction.update

    stored_ts = parse_timestamp(stored.last_modified or stored.last_modified_raw)
    incoming_ts = parse_timestamp(record.meta.last_updated)
    if stored_ts is not None and incoming_ts is not None and stored_ts >= incoming_ts:
        return ReconcileAction.skip
    return ReconcileAction.update


def _is_numeric_id(term: str) -> bool:
    # bare taxonomy ids ("12") leak through some feeds in place of names
    return term.isdigit() and len(term) <= 3


def classification_terms(record: NormalizedRecord, original: Mapping[str, Any]) -> dict[str, list[str]]:
    types = [t for t in record.property.types if t and not _is_numeric_id(t)]
    if not types:
        fallback = record.property.property_type or original.get("property_type")
        if isinstance(fallback, str) and fallback.strip() and not _is_numeric_id(fallback.strip()):
            types = [fallback.strip()]

    county = record.location.county
    location = [county.strip()] if county and county.strip() else []

    availability: list[str] = []
    for a in record.property.availabilities:
        if a and a not in availability:
            availability.append(a)

    return {"property_type": types, "location": location, "availability": availability}


class ReconciliationEngine:
    def __init__(self, repo: PropertyRepository):
        self.repo = repo

    async def reconcile(
        self,
        external_id: str,
        record: NormalizedRecord,
        original: Mapping[str, Any],
        force_update: bool = False,
    ) -> ReconcileResult:
        stored = await self.repo.find_by_external_id(external_id)
        action = decide_action(stored, record, force_update)
        if action is ReconcileAction.skip:
            return ReconcileResult(action, stored.id if stored else None)

        prop = await self.repo.upsert(record, original)
        await self._classify(prop, record, original)
        return ReconcileResult(action, prop.id)

    async def _classify(self, prop: StoredProperty, record: NormalizedRecord, original: Mapping[str, Any]) -> None:
        # terms are best-effort: a failure here must not undo the upsert
        try:
            async with self.repo.session.begin_nested():
                await self.repo.set_classifications(prop, classification_terms(record, original))
        except Exception as e:
            err = ClassificationError(f"classification failed for {record.meta.external_id}: {e}")
            log.exception("%s", err)
