"""
Client-side error classification.

A failed request's HTTP status is reduced to a StatusKind, and every kind
maps to exactly one Action. Status codes the table does not name, and
transport failures with no status at all, fall back to SERVER_ERROR.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


LOGIN_URL = "/login"
ERROR_PAGE_URL = "/error"

NOT_FOUND_NOTICE = "The requested resource was not found."
INVALID_INPUT_NOTICE = "Invalid input. Please check your data"


class StatusKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    BAD_REQUEST = "bad_request"
    SERVER_ERROR = "server_error"


class Action(str, Enum):
    REDIRECT_TO_LOGIN = "redirect_to_login"
    SHOW_NOTICE = "show_notice"
    SHOW_ERROR_PAGE = "show_error_page"


_KIND_BY_STATUS = {
    400: StatusKind.BAD_REQUEST,
    401: StatusKind.UNAUTHORIZED,
    404: StatusKind.NOT_FOUND,
}

ACTION_BY_KIND = {
    StatusKind.UNAUTHORIZED: Action.REDIRECT_TO_LOGIN,
    StatusKind.NOT_FOUND: Action.SHOW_NOTICE,
    StatusKind.BAD_REQUEST: Action.SHOW_NOTICE,
    StatusKind.SERVER_ERROR: Action.SHOW_ERROR_PAGE,
}


@dataclass(frozen=True)
class ClientAction:
    """What the user interface should do about a failed request."""
    kind: StatusKind
    action: Action
    notice: Optional[str] = None
    location: Optional[str] = None


def classify_status(status_code: Optional[int]) -> StatusKind:
    """Reduce an HTTP status (None for transport failures) to a StatusKind."""
    if status_code is None:
        return StatusKind.SERVER_ERROR
    return _KIND_BY_STATUS.get(status_code, StatusKind.SERVER_ERROR)


def resolve_action(status_code: Optional[int], server_message: Optional[str] = None) -> ClientAction:
    """
    Decide how to surface a failed request.

    Args:
        status_code: HTTP status of the failed response, None if no response arrived
        server_message: The envelope's message field, when the server sent one

    Returns:
        ClientAction with a notice for SHOW_NOTICE and a location for navigations
    """
    kind = classify_status(status_code)
    action = ACTION_BY_KIND[kind]

    if kind is StatusKind.UNAUTHORIZED:
        return ClientAction(kind, action, location=LOGIN_URL)
    if kind is StatusKind.NOT_FOUND:
        return ClientAction(kind, action, notice=NOT_FOUND_NOTICE)
    if kind is StatusKind.BAD_REQUEST:
        return ClientAction(kind, action, notice=server_message or INVALID_INPUT_NOTICE)
    return ClientAction(kind, action, location=ERROR_PAGE_URL)
