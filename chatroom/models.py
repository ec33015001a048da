"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from chatroom.storage import Base


class User(Base):
    """
    SQLAlchemy model for registered chat users.

    Table: users
    Email is stored lower-cased and is unique.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    first_name = Column(String(32), nullable=False)
    last_name = Column(String(32), nullable=False)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False)

    messages = relationship("Message", back_populates="user")


class Message(Base):
    """
    SQLAlchemy model for chat messages.

    Table: messages
    Rows are soft-deleted: deleted_at is set and the row is kept so that
    delta queries can report the deletion to other clients.
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    content = Column(String(255), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, index=True)  # naive UTC
    updated_at = Column(DateTime, nullable=False, index=True)  # naive UTC
    deleted_at = Column(DateTime, nullable=True, index=True)

    user = relationship("User", back_populates="messages", lazy="joined")


class UserSession(Base):
    """
    SQLAlchemy model for login sessions.

    Table: sessions
    Only the SHA-256 hash of the cookie value is stored.
    """
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token_hash = Column(String(64), nullable=False, unique=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
