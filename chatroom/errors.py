"""
Domain error taxonomy for the chat API.

Every handled failure carries a (status_code, message, details) triple.
The terminal handler in main.py renders errors with status >= 500 as the
generic fault page and everything else as the JSON envelope.
"""

from typing import Optional


class ChatError(Exception):
    """Base class for failures the API reports to clients."""

    status_code = 500
    default_message = "Unexpected error"

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationError(ChatError):
    """Client-correctable input problem."""
    status_code = 400
    default_message = "Invalid input"


class AuthError(ChatError):
    """Session missing, expired or credentials rejected."""
    status_code = 401
    default_message = "Unauthorized request"


class OwnershipError(ChatError):
    """Authenticated, but not allowed to touch this resource."""
    status_code = 403
    default_message = "The user is not the owner of the message"


class NotFoundError(ChatError):
    status_code = 404
    default_message = "Can not find the requested message"


class ServerError(ChatError):
    """Unexpected internal failure; details never reach the client."""
    status_code = 500
    default_message = "Internal server error"
