import enum
from typing import Optional

from pydantic import BaseModel


class CallerKind(str, enum.Enum):
    admin = "admin"
    user = "user"
    anonymous = "anonymous"


class Caller(BaseModel):
    """Who is asking, as vouched for by the identity service."""

    kind: CallerKind
    user_id: Optional[str] = None

    model_config = {"frozen": True}

    @classmethod
    def anonymous(cls) -> "Caller":
        return cls(kind=CallerKind.anonymous)

    @classmethod
    def admin(cls, user_id: Optional[str] = None) -> "Caller":
        return cls(kind=CallerKind.admin, user_id=user_id)

    @classmethod
    def user(cls, user_id: str) -> "Caller":
        return cls(kind=CallerKind.user, user_id=user_id)

    @property
    def is_admin(self) -> bool:
        return self.kind == CallerKind.admin

    @property
    def is_authenticated(self) -> bool:
        return self.kind != CallerKind.anonymous

    @property
    def label(self) -> str:
        if self.user_id:
            return f"{self.kind.value}:{self.user_id}"
        return self.kind.value
