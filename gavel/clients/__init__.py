from .base_model import (
    BaseEntity,
    BaseEntityData,
    DataT,
    T,
    new_id,
    utcnow,
)
from .store import (
    VersionedStore,
    Write,
)
