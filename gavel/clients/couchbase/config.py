import asyncio
from datetime import timedelta
from typing import Optional

from acouchbase.cluster import Cluster as AsyncCluster
from couchbase.auth import PasswordAuthenticator
from couchbase.options import ClusterOptions

from gavel import conf
from gavel.utils import log

logger = log.get_logger(__name__)

# Module-level cluster cache
_cluster: Optional[AsyncCluster] = None


def get_default_bucket_name() -> str:
    return conf.get_couchbase_conf().bucket


def get_default_scope_name() -> str:
    return conf.get_couchbase_conf().scope


async def get_cluster(max_retries: int = 10, initial_delay: float = 1.0, max_delay: float = 30.0) -> AsyncCluster:
    """
    Returns a cached Couchbase cluster connection.
    Creates a new connection if one doesn't exist.
    Implements retry with exponential backoff for startup race conditions.
    """
    global _cluster
    if _cluster is None:
        cb_conf = conf.get_couchbase_conf()
        url = f"{cb_conf.protocol}://{cb_conf.host}"
        auth = PasswordAuthenticator(cb_conf.username, cb_conf.password)
        delay = initial_delay

        for attempt in range(1, max_retries + 1):
            try:
                cluster = await AsyncCluster.connect(url, ClusterOptions(auth))
                break
            except Exception as e:
                if attempt == max_retries:
                    raise
                logger.warning(f"Couchbase connect attempt {attempt} failed: {e}; retrying in {delay:.0f}s")
                await asyncio.sleep(delay)
                delay = min(delay * 2, max_delay)

        await cluster.wait_until_ready(timedelta(seconds=50))
        _cluster = cluster
    return _cluster


async def check_connection():
    """
    Explicitly checks the connection to the Couchbase cluster.
    Useful for startup checks.
    """
    cluster = await get_cluster()
    await cluster.ping()
