"""
Couchbase-backed ``VersionedStore``.

Single-document writes use CAS-guarded replace; multi-document commits run
inside a Couchbase ACID transaction.  The payload's integer ``version`` is
the engine-visible concurrency stamp; CAS is the backend's enforcement of it.
"""

from datetime import datetime
from typing import Any, List, Optional, Sequence

from couchbase.exceptions import (
    CASMismatchException,
    DocumentExistsException,
    DocumentNotFoundException,
    TransactionExpired,
    TransactionFailed,
)
from couchbase.options import ReplaceOptions

from gavel.clients.base_model import BaseEntity, T, utcnow
from gavel.clients.store import VersionedStore, Write, stamp
from gavel.exceptions import ConflictError
from gavel.models.entities.auctions import Auction
from gavel.utils import log

from .config import check_connection, get_cluster
from .keyspace import Keyspace, get_keyspace

logger = log.get_logger(__name__)


class CouchbaseStore(VersionedStore):

    def __init__(self, scope_name: Optional[str] = None, bucket_name: Optional[str] = None):
        self.scope_name = scope_name
        self.bucket_name = bucket_name

    def _keyspace(self, kind: type[BaseEntity]) -> Keyspace:
        return get_keyspace(kind.get_collection_name(), self.scope_name, self.bucket_name)

    async def check(self) -> None:
        await check_connection()

    async def get(self, kind: type[T], entity_id: str) -> Optional[T]:
        collection = await self._keyspace(kind).get_collection()
        try:
            result = await collection.get(entity_id)
        except DocumentNotFoundException:
            return None
        return kind.from_document(entity_id, result.content_as[dict], cas=result.cas)

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    async def commit(self, writes: Sequence[Write]) -> List[BaseEntity]:
        if not writes:
            return []
        if len(writes) == 1:
            write = writes[0]
            if write.is_insert:
                return [await self._insert(write)]
            return [await self._replace(write)]
        return await self._commit_transaction(writes)

    async def _insert(self, write: Write) -> BaseEntity:
        entity = stamp(write)
        collection = await self._keyspace(type(entity)).get_collection()
        try:
            result = await collection.insert(entity.id, entity.to_document())
        except DocumentExistsException as e:
            raise ConflictError(
                f"{type(entity).__name__} {entity.id} already exists", entity_id=entity.id
            ) from e
        entity.cas = result.cas
        return entity

    async def _replace(self, write: Write) -> BaseEntity:
        entity = stamp(write)
        collection = await self._keyspace(type(entity)).get_collection()

        cas = write.entity.cas
        if cas is None or write.entity.version != write.expected_version:
            try:
                current = await collection.get(entity.id)
            except DocumentNotFoundException as e:
                raise ConflictError(f"{type(entity).__name__} {entity.id} no longer exists", entity_id=entity.id) from e
            self._check_version(entity, current.content_as[dict], write.expected_version)
            cas = current.cas

        try:
            result = await collection.replace(entity.id, entity.to_document(), ReplaceOptions(cas=cas))
        except (CASMismatchException, DocumentNotFoundException) as e:
            raise ConflictError(
                f"{type(entity).__name__} {entity.id} changed since version {write.expected_version}",
                entity_id=entity.id,
                expected_version=write.expected_version,
            ) from e
        entity.cas = result.cas
        return entity

    @staticmethod
    def _check_version(entity: BaseEntity, stored: dict, expected_version: int) -> None:
        if stored.get("version") != expected_version:
            raise ConflictError(
                f"{type(entity).__name__} {entity.id} version mismatch",
                entity_id=entity.id,
                expected_version=expected_version,
                actual_version=stored.get("version"),
            )

    async def _commit_transaction(self, writes: Sequence[Write]) -> List[BaseEntity]:
        cluster = await get_cluster()
        now = utcnow()
        committed = [stamp(write, now) for write in writes]
        collections = [await self._keyspace(type(e)).get_collection() for e in committed]
        conflicts: List[ConflictError] = []

        async def txn_logic(ctx):
            for write, entity, collection in zip(writes, committed, collections):
                if write.is_insert:
                    await ctx.insert(collection, entity.id, entity.to_document())
                    continue
                current = await ctx.get(collection, entity.id)
                try:
                    self._check_version(entity, current.content_as[dict], write.expected_version)
                except ConflictError as e:
                    conflicts.append(e)
                    raise
                await ctx.replace(current, entity.to_document())

        try:
            await cluster.transactions.run(txn_logic)
        except (TransactionFailed, TransactionExpired) as e:
            if conflicts:
                raise conflicts[-1] from e
            logger.warning(f"Transaction over {len(writes)} documents rolled back: {e}")
            raise ConflictError(f"Transaction rolled back: {e}") from e

        # CAS values from inside the transaction are not exposed; force a
        # version-checked re-read on the next single-document write.
        for entity in committed:
            entity.cas = None
        return committed

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    async def find(self, kind: type[T], limit: Optional[int] = None, **equals: Any) -> List[T]:
        keyspace = self._keyspace(kind)
        conditions = [f"d.`{field}` = ${field}" for field in equals]
        where = " AND ".join(conditions) if conditions else "TRUE"
        limit_clause = f" LIMIT {int(limit)}" if limit is not None else ""
        query = f"SELECT META(d).id AS id, d AS doc FROM {keyspace} AS d WHERE {where}{limit_clause}"
        rows = await keyspace.query(query, **equals)
        return [kind.from_document(row["id"], row["doc"]) for row in rows if row.get("doc")]

    async def find_due_auctions(self, now: datetime) -> List[Auction]:
        keyspace = self._keyspace(Auction)
        query = (
            f"SELECT META(d).id AS id, d AS doc FROM {keyspace} AS d "
            f"WHERE d.is_deleted = FALSE AND ("
            f"(d.status = 'upcoming' AND STR_TO_MILLIS(d.start_date) <= $now_ms) OR "
            f"(d.status = 'active' AND STR_TO_MILLIS(d.end_date) <= $now_ms))"
        )
        rows = await keyspace.query(query, now_ms=int(now.timestamp() * 1000))
        return [Auction.from_document(row["id"], row["doc"]) for row in rows if row.get("doc")]
