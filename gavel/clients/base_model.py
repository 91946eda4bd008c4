import uuid
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class BaseEntityData(BaseModel):
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Optimistic concurrency stamp, bumped by the store on every write
    version: int = 0

    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by_id: Optional[str] = None


DataT = TypeVar("DataT", bound=BaseEntityData)
T = TypeVar("T", bound="BaseEntity")


class BaseEntity(BaseModel, Generic[DataT]):
    id: str
    data: DataT
    # Backend-specific write token (Couchbase CAS); not part of the document
    cas: Optional[int] = None

    collection_name: ClassVar[str] = ""

    @property
    def version(self) -> int:
        return self.data.version

    @classmethod
    def get_collection_name(cls) -> str:
        if not cls.collection_name:
            raise ValueError(f"collection_name not set for {cls.__name__}")
        return cls.collection_name

    def to_document(self) -> Dict[str, Any]:
        """Serialize the payload for storage (decimals and datetimes as strings)."""
        return self.data.model_dump(mode="json")

    @classmethod
    def from_document(cls: type[T], id: str, doc: Dict[str, Any], cas: Optional[int] = None) -> T:
        return cls(id=id, data=doc, cas=cas)

    @classmethod
    def new(cls: type[T], data: DataT, key: Optional[str] = None) -> T:
        now = utcnow()
        if data.created_at is None:
            data.created_at = now
        data.updated_at = now
        return cls(id=key or new_id(), data=data)

    def copy_for_write(self: T) -> T:
        return self.model_copy(deep=True)
