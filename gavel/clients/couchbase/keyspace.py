from dataclasses import dataclass
from typing import Optional

from couchbase.options import QueryOptions

from .config import get_cluster, get_default_bucket_name, get_default_scope_name


@dataclass
class Keyspace:
    bucket_name: str
    scope_name: str
    collection_name: str

    def __str__(self) -> str:
        return f"`{self.bucket_name}`.`{self.scope_name}`.`{self.collection_name}`"

    async def query(self, query: str, **params) -> list:
        """Run a N1QL query with named ``$params``."""
        cluster = await get_cluster()
        options = QueryOptions(named_parameters=params) if params else QueryOptions()
        result = cluster.query(query, options)
        return [row async for row in result]

    async def get_scope(self):
        cluster = await get_cluster()
        bucket = cluster.bucket(self.bucket_name)
        return bucket.scope(self.scope_name)

    async def get_collection(self):
        scope = await self.get_scope()
        return scope.collection(self.collection_name)


def get_keyspace(
    collection_name: str,
    scope_name: Optional[str] = None,
    bucket_name: Optional[str] = None,
) -> Keyspace:
    """
    Create a Keyspace instance with optional scope and bucket parameters.

    Scope and bucket default to the configured COUCHBASE_SCOPE / COUCHBASE_BUCKET.
    """
    return Keyspace(
        bucket_name or get_default_bucket_name(),
        scope_name or get_default_scope_name(),
        collection_name,
    )
