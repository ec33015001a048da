"""
Delta-sync classification.

A client polls with the timestamp of the last moment it fully observed
(the cursor). Each changed row is tagged relative to that cursor:

- deleted: the row is soft-deleted
- new:     the row was created after the cursor
- updated: anything else that changed after the cursor

The checks run in that order, so a row created and deleted between two
polls is reported as deleted and a row created and edited between two
polls is reported as new.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from chatroom.errors import ValidationError
from chatroom.utils import parse_timestamp

logger = logging.getLogger(__name__)


class MessageStatus(str, Enum):
    NEW = "new"
    UPDATED = "updated"
    DELETED = "deleted"


def parse_cursor(raw: Optional[str]) -> datetime:
    """
    Parse the lastFetchTimeStamp query parameter.

    Raises:
        ValidationError: if the value is missing or not ISO-8601
    """
    if raw is None or not raw.strip():
        raise ValidationError(
            "Can not retrieve messages",
            details="lastFetchTimeStamp is required",
        )
    try:
        return parse_timestamp(raw)
    except ValueError:
        logger.warning(f"Rejected malformed cursor: {raw!r}")
        raise ValidationError(
            "Can not retrieve messages",
            details="lastFetchTimeStamp must be an ISO-8601 timestamp",
        )


def classify_message(message, cursor: datetime) -> MessageStatus:
    """
    Tag a changed row relative to cursor.

    Args:
        message: Any object with created_at and deleted_at (naive UTC)
        cursor: Naive UTC cursor the caller polled with
    """
    if message.deleted_at is not None:
        return MessageStatus.DELETED
    if message.created_at > cursor:
        return MessageStatus.NEW
    return MessageStatus.UPDATED


def classify_messages(messages: Iterable, cursor: datetime) -> List[Tuple[object, MessageStatus]]:
    """Pair every row with its status."""
    return [(message, classify_message(message, cursor)) for message in messages]
