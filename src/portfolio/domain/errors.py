from __future__ import annotations

"""Error taxonomy for the chat assistant.

Every error carries a ``details`` string meant for operators. End users only
ever see :data:`GENERIC_FAILURE_MESSAGE`.
"""

from typing import Optional

GENERIC_FAILURE_MESSAGE = "حدث خطأ في معالجة طلبك"


class ChatError(Exception):
    """Base class for failures surfaced by the chat session handler."""

    outcome = "error"

    def __init__(self, details: str) -> None:
        super().__init__(details)
        self.details = details

    @property
    def user_message(self) -> str:
        return GENERIC_FAILURE_MESSAGE


class ValidationError(ChatError):
    outcome = "validation_error"


class UpstreamConfigError(ChatError):
    outcome = "upstream_config_error"


class UpstreamError(ChatError):
    outcome = "upstream_error"

    def __init__(self, details: str, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(details)
        self.status_code = status_code
        self.body = body


class PersistenceError(ChatError):
    outcome = "persistence_error"


class ConflictError(PersistenceError):
    """Raised by gateways when an insert violates a uniqueness constraint."""
