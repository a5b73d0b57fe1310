"""Pydantic models for auth domain."""

from datetime import datetime

from pydantic import BaseModel, Field


class User(BaseModel):
    """A registered user of the system."""

    id: str = Field(..., description="Opaque user id (UUID or cuid)")
    email: str
    name: str | None = None
    billing_customer_id: str | None = None
    created_at: datetime
    last_login_at: datetime | None = None

    model_config = {"from_attributes": True}


class VerificationToken(BaseModel):
    """A magic link token awaiting verification. Only the hash is stored."""

    id: str
    token_hash: str
    email: str
    expires_at: datetime
    used: bool  # Required - fail closed, no default
    created_at: datetime


class SessionClaims(BaseModel):
    """Claims carried by a signed session credential."""

    user_id: str
    email: str
    issued_at: datetime
    expires_at: datetime


class MagicLinkRequest(BaseModel):
    """Request payload for magic link.

    Email stays a plain string so malformed input reaches the validator and
    comes back as a 400, not a schema error.
    """

    email: str = ""
    name: str | None = None


class VerifyTokenRequest(BaseModel):
    """Request payload for token verification."""

    token: str | None = None


class UserUpdate(BaseModel):
    """Profile changes. Unknown fields (id, created_at, ...) are dropped."""

    name: str | None = None
    email: str | None = None

    model_config = {"extra": "ignore"}


class MagicLinkResult(BaseModel):
    """Result of magic link request."""

    success: bool
    message: str


class VerificationResult(BaseModel):
    """User info returned after successful verification."""

    user: User
    is_new_user: bool
