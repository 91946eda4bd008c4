from .config import (
    check_connection,
    get_cluster,
)
from .keyspace import (
    Keyspace,
    get_keyspace,
)
from .store import CouchbaseStore
