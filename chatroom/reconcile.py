"""
Reconciliation of status-tagged messages into a displayed list.

DisplayedList mirrors what a chat view shows: messages keyed by id, in
the order they first appeared. A delta batch is applied to a copy which
then replaces the current state, so a viewer never sees half a batch.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional

from chatroom.schemas import ClassifiedMessageResponse, MessageResponse
from chatroom.sync import MessageStatus

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    added: List[int] = field(default_factory=list)
    updated: List[int] = field(default_factory=list)
    removed: List[int] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.removed)


class DisplayedList:
    """Ordered, id-keyed mirror of the messages on screen."""

    def __init__(self, messages: Iterable[MessageResponse] = ()):
        self._items: "OrderedDict[int, MessageResponse]" = OrderedDict()
        self.replace_all(messages)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[MessageResponse]:
        return iter(list(self._items.values()))

    def __contains__(self, message_id: int) -> bool:
        return message_id in self._items

    def get(self, message_id: int) -> Optional[MessageResponse]:
        return self._items.get(message_id)

    def ids(self) -> List[int]:
        return list(self._items)

    def replace_all(self, messages: Iterable[MessageResponse]) -> None:
        """Render a full fetch: discard the current contents."""
        items: "OrderedDict[int, MessageResponse]" = OrderedDict()
        for message in messages:
            items[message.id] = message
        self._items = items

    def apply(self, batch: Iterable[ClassifiedMessageResponse]) -> ReconcileResult:
        """
        Apply a delta batch.

        - new: appended, or refreshed in place if the id is already displayed
        - updated: content and timestamp replaced in place if displayed
        - deleted: removed if displayed

        Overlapping poll windows can deliver a row as new twice, the second
        time with edited content. Applying the same batch twice changes
        nothing the second time.
        """
        items = OrderedDict(self._items)
        result = ReconcileResult()

        for message in batch:
            current: Optional[MessageResponse] = items.get(message.id)
            if message.status is MessageStatus.NEW:
                if current is None:
                    items[message.id] = _as_displayed(message)
                    result.added.append(message.id)
                elif _differs(current, message):
                    items[message.id] = current.model_copy(
                        update={"content": message.content, "updated_at": message.updated_at}
                    )
                    result.updated.append(message.id)
            elif message.status is MessageStatus.UPDATED:
                if current is not None and _differs(current, message):
                    items[message.id] = current.model_copy(
                        update={"content": message.content, "updated_at": message.updated_at}
                    )
                    result.updated.append(message.id)
            elif message.status is MessageStatus.DELETED:
                if current is not None:
                    del items[message.id]
                    result.removed.append(message.id)

        self._items = items
        if result.changed:
            logger.debug(
                f"Reconciled batch: +{len(result.added)} ~{len(result.updated)} -{len(result.removed)}"
            )
        return result


def _as_displayed(message: ClassifiedMessageResponse) -> MessageResponse:
    # The status only describes this delivery; it is not part of what is shown
    return MessageResponse.model_validate(message.model_dump(exclude={"status"}))


def _differs(current: MessageResponse, incoming: MessageResponse) -> bool:
    return current.content != incoming.content or current.updated_at != incoming.updated_at
