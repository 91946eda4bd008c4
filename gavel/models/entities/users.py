from typing import Literal, Optional

from gavel.clients import BaseEntity, BaseEntityData


class UserData(BaseEntityData):
    """Owned by the user-management service; the engine only reads it."""
    email: Optional[str] = None
    username: Optional[str] = None
    role: Literal["user", "admin"] = "user"


class User(BaseEntity[UserData]):
    collection_name = "users"

    @property
    def is_admin(self) -> bool:
        return self.data.role == "admin"
