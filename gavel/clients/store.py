"""
Optimistic-concurrency store contract.

Every mutation of an auction, bid or user document goes through a
``VersionedStore``.  A write names the version it was based on; the store
applies it only if the stored version still matches, bumps the version by
exactly one, and raises ``ConflictError`` otherwise.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence, Tuple

from gavel.exceptions import ConflictError, NotFoundError

from .base_model import BaseEntity, T, utcnow


@dataclass
class Write:
    """One document write inside an atomic ``commit``.

    ``expected_version`` of ``None`` means insert.
    """
    entity: BaseEntity
    expected_version: Optional[int] = None

    @classmethod
    def insert(cls, entity: BaseEntity) -> "Write":
        return cls(entity=entity, expected_version=None)

    @classmethod
    def update(cls, entity: BaseEntity, expected_version: int) -> "Write":
        return cls(entity=entity, expected_version=expected_version)

    @property
    def is_insert(self) -> bool:
        return self.expected_version is None


def stamp(write: Write, now: Optional[datetime] = None) -> BaseEntity:
    """Return a copy of the write's entity carrying its post-commit version."""
    now = now or utcnow()
    entity = write.entity.model_copy(deep=True)
    if write.is_insert:
        entity.data.version = 0
        if entity.data.created_at is None:
            entity.data.created_at = now
    else:
        entity.data.version = write.expected_version + 1
    entity.data.updated_at = now
    return entity


class VersionedStore(ABC):

    @abstractmethod
    async def get(self, kind: type[T], entity_id: str) -> Optional[T]:
        """Return the entity or ``None``. Soft-deleted documents are returned."""

    @abstractmethod
    async def commit(self, writes: Sequence[Write]) -> List[BaseEntity]:
        """Apply all writes atomically or none of them.

        Raises ``ConflictError`` if any update's expected version is stale or
        any insert's id already exists.
        """

    @abstractmethod
    async def find(self, kind: type[T], limit: Optional[int] = None, **equals: Any) -> List[T]:
        """Equality query over payload fields."""

    @abstractmethod
    async def find_due_auctions(self, now: datetime) -> List[BaseEntity]:
        """Non-deleted upcoming auctions with ``start_date <= now`` and
        active auctions with ``end_date <= now``."""

    async def check(self) -> None:
        """Connectivity probe; raises if the backend is unreachable."""
        return None

    async def read(self, kind: type[T], entity_id: str) -> Tuple[T, int]:
        entity = await self.get(kind, entity_id)
        if entity is None:
            raise NotFoundError(f"{kind.__name__} {entity_id} not found", entity_id=entity_id)
        return entity, entity.version

    async def insert(self, entity: T) -> T:
        [created] = await self.commit([Write.insert(entity)])
        return created

    async def update(
        self,
        kind: type[T],
        entity_id: str,
        expected_version: int,
        mutation: Callable[[Any], None],
    ) -> T:
        """Read-check-write one document.

        *mutation* receives the entity's ``data`` and mutates it in place.
        The final version comparison happens atomically inside ``commit``.
        """
        entity, version = await self.read(kind, entity_id)
        if version != expected_version:
            raise ConflictError(
                f"{kind.__name__} {entity_id} is at version {version}, expected {expected_version}",
                entity_id=entity_id,
                expected_version=expected_version,
                actual_version=version,
            )
        mutation(entity.data)
        [updated] = await self.commit([Write.update(entity, expected_version)])
        return updated
