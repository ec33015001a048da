"""
Ownership-gated message mutations.

write_message, update_message and delete_message are the only writers of
message state. The caller's user id is always passed in explicitly.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from chatroom.config import settings
from chatroom.errors import NotFoundError, OwnershipError, ValidationError
from chatroom.storage import (
    create_message,
    get_message_by_id,
    soft_delete_message,
    update_message_content,
)
from chatroom.utils import strip_markup

logger = logging.getLogger(__name__)


def clean_content(raw: Optional[str], failure_message: str) -> str:
    """
    Trim and strip markup from message content.

    Raises:
        ValidationError: if nothing is left, or the text is too long
    """
    content = strip_markup((raw or "").strip()).strip()
    if not content:
        raise ValidationError(failure_message, details="Message content must not be empty")
    if len(content) > settings.MESSAGE_MAX_LENGTH:
        raise ValidationError(
            failure_message,
            details=f"Message content must be at most {settings.MESSAGE_MAX_LENGTH} characters",
        )
    return content


def ensure_owner(message, caller_id: int) -> None:
    """Raise OwnershipError unless caller_id authored message."""
    if message.user_id != caller_id:
        raise OwnershipError()


def _find_owned(db: Session, message_id: int, caller_id: int):
    message = get_message_by_id(db, message_id)
    if message is None:
        logger.info(f"Message {message_id} not found for user {caller_id}")
        raise NotFoundError("Can not find the requested message to edit/delete")
    ensure_owner(message, caller_id)
    return message


def write_message(db: Session, caller_id: int, raw_content: Optional[str]):
    """Create a message authored by the caller."""
    content = clean_content(raw_content, "Can not send message")
    return create_message(db, user_id=caller_id, content=content)


def update_message(db: Session, caller_id: int, message_id: int, raw_content: Optional[str]):
    """
    Replace the content of one of the caller's messages.

    Raises:
        NotFoundError: no live message with this id
        OwnershipError: the caller is not the author
        ValidationError: the new content is empty or too long
    """
    message = _find_owned(db, message_id, caller_id)
    content = clean_content(raw_content, "Can not update message")
    return update_message_content(db, message, content)


def delete_message(db: Session, caller_id: int, message_id: int):
    """Soft-delete one of the caller's messages."""
    message = _find_owned(db, message_id, caller_id)
    return soft_delete_message(db, message)
