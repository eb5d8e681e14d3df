from dataclasses import dataclass
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from atelier.schema.full_schema import UserRole


class SignupIn(BaseModel):
    email: str = Field(..., examples=["user@example.com"])
    password: str = Field(..., examples=["Str0ngPassword"])
    name: Optional[str] = Field(None, max_length=128, examples=["Full Name"])


class SignIn(BaseModel):
    email: str = Field(...)
    password: str = Field(...)


class SyncIn(BaseModel):
    client_data: Dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True)
class Identity:
    """Who is calling: a logged in user, or an anonymous visitor keyed by the session cookie."""
    user_id: Optional[int] = None
    role: Optional[str] = None
    email: Optional[str] = None
    session_key: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value
