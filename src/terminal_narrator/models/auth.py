"""
Authentication Models
=====================

Pydantic schemas for the terminal server's auth API plus the in-memory
bearer token.

API Contract:
    GET  /api/auth/config    -> {"noAuth": false, "enableSSHKeys": true, ...}
    POST /api/auth/password  <- {"userId": "...", "password": "..."}
                             -> {"success": true, "token": "...", "userId": "...", "authMethod": "password"}
    GET  /api/auth/verify    (Authorization: Bearer <token>) -> 200 / 401
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthConfigResponse(BaseModel):
    """Server authentication mode."""

    model_config = ConfigDict(populate_by_name=True)

    no_auth: bool = Field(default=False, alias="noAuth")
    enable_ssh_keys: Optional[bool] = Field(default=None, alias="enableSSHKeys")
    disallow_user_password: Optional[bool] = Field(default=None, alias="disallowUserPassword")


class LoginRequest(BaseModel):
    """Password login body."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    password: str = Field(...)


class LoginResponse(BaseModel):
    """Password login result."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = Field(...)
    token: str = Field(default="")
    user_id: str = Field(default="", alias="userId")
    auth_method: Optional[str] = Field(default=None, alias="authMethod")


class Credentials(BaseModel):
    """Long-lived credentials kept in the secret store for silent refresh."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r})"


class AuthToken(BaseModel):
    """
    Bearer token with its issuance time.

    A token is treated as expired once its age reaches the TTL, whatever
    the server would say about it.

    Attributes:
        value: Opaque bearer token
        issued_at: Monotonic clock reading at issuance
    """

    model_config = ConfigDict(frozen=True)

    value: str
    issued_at: float

    def age(self, now: float) -> float:
        return now - self.issued_at

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return self.age(now) >= ttl_seconds

    def __repr__(self) -> str:
        return f"AuthToken(value={self.value[:8]}..., issued_at={self.issued_at:.1f})"
