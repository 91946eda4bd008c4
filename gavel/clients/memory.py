import asyncio
import copy
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from gavel.exceptions import ConflictError
from gavel.models.entities.auctions import Auction

from .base_model import BaseEntity, T, utcnow
from .store import VersionedStore, Write, stamp


class MemoryStore(VersionedStore):
    """In-process document store.

    Documents are held in their serialized (JSON) form, so readers never
    share objects with the store.  Every call awaits ``latency`` seconds
    before touching data, which hands control back to the event loop the
    way a network round-trip would.  ``commit`` validates and applies with
    no suspension point in between, which is what makes it atomic.
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)

    async def _round_trip(self) -> None:
        await asyncio.sleep(self.latency)

    async def get(self, kind: type[T], entity_id: str) -> Optional[T]:
        await self._round_trip()
        doc = self._collections[kind.get_collection_name()].get(entity_id)
        if doc is None:
            return None
        return kind.from_document(entity_id, copy.deepcopy(doc))

    async def commit(self, writes: Sequence[Write]) -> List[BaseEntity]:
        await self._round_trip()

        for write in writes:
            collection = self._collections[write.entity.get_collection_name()]
            current = collection.get(write.entity.id)
            if write.is_insert:
                if current is not None:
                    raise ConflictError(
                        f"{type(write.entity).__name__} {write.entity.id} already exists",
                        entity_id=write.entity.id,
                    )
            elif current is None or current.get("version") != write.expected_version:
                raise ConflictError(
                    f"{type(write.entity).__name__} {write.entity.id} version mismatch",
                    entity_id=write.entity.id,
                    expected_version=write.expected_version,
                    actual_version=current.get("version") if current else None,
                )

        now = utcnow()
        committed = [stamp(write, now) for write in writes]
        for entity in committed:
            self._collections[entity.get_collection_name()][entity.id] = entity.to_document()
        return committed

    async def find(self, kind: type[T], limit: Optional[int] = None, **equals: Any) -> List[T]:
        await self._round_trip()
        items = []
        for entity_id, doc in self._collections[kind.get_collection_name()].items():
            entity = kind.from_document(entity_id, copy.deepcopy(doc))
            if all(getattr(entity.data, field) == value for field, value in equals.items()):
                items.append(entity)
                if limit is not None and len(items) >= limit:
                    break
        return items

    async def find_due_auctions(self, now: datetime) -> List[Auction]:
        auctions = await self.find(Auction, is_deleted=False)
        return [
            a for a in auctions
            if (a.data.status == "upcoming" and a.data.start_date <= now)
            or (a.data.status == "active" and a.data.end_date <= now)
        ]
