"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses (also parsed by the sync client)

Wire field names are camelCase; Python attribute names are snake_case.
"""

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_serializer, field_validator, model_validator

from chatroom.sync import MessageStatus
from chatroom.utils import format_timestamp


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# bcrypt only looks at the first 72 bytes of a password
_BCRYPT_MAX_BYTES = 72


# =============================================================================
# Pydantic Request Models
# =============================================================================

class WriteMessageRequest(BaseModel):
    """Body of POST /api/message."""
    message_content: Optional[str] = Field(
        None,
        alias="messageContent",
        description="Message text; markup is stripped before it is stored"
    )

    model_config = {"populate_by_name": True}


class UpdateMessageRequest(BaseModel):
    """Body of PUT /api/message."""
    message_id: int = Field(..., alias="messageId", description="Message to edit")
    message_content: Optional[str] = Field(
        None,
        alias="messageContent",
        description="Replacement text"
    )

    model_config = {"populate_by_name": True}


class RegistrationRequest(BaseModel):
    """
    Body of POST /registration.

    Validates:
    - email: basic address shape, stored lower-cased
    - firstName/lastName: letters only, 3-32 characters
    - password: 3-32 characters, must equal vPassword
    """
    email: str = Field(..., description="Login email address")
    first_name: str = Field(..., alias="firstName", min_length=3, max_length=32)
    last_name: str = Field(..., alias="lastName", min_length=3, max_length=32)
    password: str = Field(..., min_length=3, max_length=32)
    v_password: str = Field(..., alias="vPassword", description="Password confirmation")

    model_config = {"populate_by_name": True, "str_strip_whitespace": True}

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if not _EMAIL_RE.match(v):
            raise ValueError("Email address is invalid")
        return v.lower()

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.isalpha():
            raise ValueError("Please use a valid name (letters A-Za-z)")
        return v

    @field_validator("password")
    @classmethod
    def validate_password_bytes(cls, v: str) -> str:
        if len(v.encode("utf-8")) > _BCRYPT_MAX_BYTES:
            raise ValueError("Password too long")
        return v

    @model_validator(mode="after")
    def passwords_match(self) -> "RegistrationRequest":
        if self.password != self.v_password:
            raise ValueError("Passwords dont match!")
        return self


class LoginRequest(BaseModel):
    """Body of POST /login."""
    email: str
    password: str

    model_config = {"str_strip_whitespace": True}


# =============================================================================
# Pydantic Response Models
# =============================================================================

class AuthorResponse(BaseModel):
    """Minimal author display fields joined onto each message."""
    first_name: str = Field(..., alias="firstName")
    last_name: str = Field(..., alias="lastName")

    model_config = {"populate_by_name": True}


class MessageResponse(BaseModel):
    """
    A single message as returned by the message endpoints.
    Timestamps are serialized as ISO-8601 UTC with a Z suffix.
    """
    id: int = Field(..., description="Server-assigned message id")
    content: str = Field(..., description="Message text")
    user_id: int = Field(..., alias="userId", description="Author user id")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")
    deleted_at: Optional[datetime] = Field(None, alias="deletedAt")
    user: Optional[AuthorResponse] = None

    model_config = {"populate_by_name": True}

    @field_serializer("created_at", "updated_at", "deleted_at")
    def serialize_timestamp(self, value: Optional[datetime]) -> Optional[str]:
        return format_timestamp(value)

    @classmethod
    def from_row(cls, message, **extra) -> "MessageResponse":
        """Build from a Message ORM row (author joined when loaded)."""
        author = None
        if message.user is not None:
            author = AuthorResponse(
                first_name=message.user.first_name,
                last_name=message.user.last_name,
            )
        return cls(
            id=message.id,
            content=message.content,
            user_id=message.user_id,
            created_at=message.created_at,
            updated_at=message.updated_at,
            deleted_at=message.deleted_at,
            user=author,
            **extra,
        )


class ClassifiedMessageResponse(MessageResponse):
    """A message from the delta endpoint, tagged relative to the caller's cursor."""
    status: MessageStatus = Field(..., description="new, updated or deleted")


class MessagesData(BaseModel):
    messages: list[MessageResponse] = Field(default_factory=list)


class ClassifiedMessagesData(BaseModel):
    messages: list[ClassifiedMessageResponse] = Field(default_factory=list)


class MessagesEnvelope(BaseModel):
    """Response envelope for the full and search endpoints."""
    message: str
    data: MessagesData


class ClassifiedMessagesEnvelope(BaseModel):
    """Response envelope for GET /api/message/date."""
    message: str
    data: ClassifiedMessagesData


class MessageEnvelope(BaseModel):
    """Response envelope for write/update/delete."""
    message: str
    data: Optional[MessageResponse] = None


class ErrorEnvelope(BaseModel):
    """Envelope for every handled error below 500."""
    message: str = Field(..., description="Human readable error")
    details: Optional[str] = Field(None, description="Extra context, when safe to share")


class UserResponse(BaseModel):
    id: int
    email: str
    first_name: str = Field(..., alias="firstName")
    last_name: str = Field(..., alias="lastName")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_row(cls, user) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
        )


class UserEnvelope(BaseModel):
    message: str
    data: UserResponse


class StatusEnvelope(BaseModel):
    message: str


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
