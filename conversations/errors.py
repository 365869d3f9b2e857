"""
Failure taxonomy of the conversation engine.

Every error carries a stable ``kind`` string so the HTTP layer (or any other
caller) can map it without inspecting messages.
"""


class ConversationError(Exception):
    kind = "Unknown"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind


class InvalidInput(ConversationError):
    kind = "InvalidInput"


class Forbidden(ConversationError):
    kind = "Forbidden"


class NotFound(ConversationError):
    kind = "NotFound"


class BackendError(ConversationError):
    """Raised by the generation adapter. Never retried on the request path."""
    kind = "BackendUnknown"


class BackendAuthError(BackendError):
    kind = "BackendAuthError"


class BackendRateLimited(BackendError):
    kind = "BackendRateLimited"


class BackendUnavailable(BackendError):
    kind = "BackendUnavailable"


class BackendUnknown(BackendError):
    kind = "BackendUnknown"


class TitleDerivationFailed(ConversationError):
    kind = "TitleDerivationFailed"
