from typing import Optional


class ChatError(Exception):
    """Base of the closed error taxonomy raised by store adapters and services."""

    kind = "unknown"
    status_code = 502
    user_message = "Something went wrong. Please try again."

    def __init__(self, message: str = "", *, field: Optional[str] = None) -> None:
        super().__init__(message or self.user_message)
        self.message = message or self.user_message
        self.field = field


class NotAvailable(ChatError):
    """Backing collection, index or function is not provisioned yet."""

    kind = "not_available"
    status_code = 503
    user_message = "Messaging is not available yet."


class ValidationError(ChatError):

    kind = "validation"
    status_code = 422
    user_message = "Some of the information sent is invalid."


class Unauthorized(ChatError):

    kind = "unauthorized"
    status_code = 403
    user_message = "You are not allowed to do that."


class Unknown(ChatError):

    kind = "unknown"
    status_code = 502
