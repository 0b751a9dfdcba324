"""
Error kinds raised by the core.

Routers translate these into HTTP responses. Publish failures are not
exceptions — the gateway returns them as PublishFailure values so the
dispatch cycle can treat every non-success the same way.
"""


class LinkcastError(Exception):
    """Base class for all core errors."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(LinkcastError):
    """Malformed input (bad URL, bad code, missing field). Never retried."""


# --- Identifier allocation ---

class CodeTaken(LinkcastError):
    pass


class AllocationExhausted(LinkcastError):
    pass


# --- Link resolution ---

class LinkNotFound(LinkcastError):
    pass


class LinkInactive(LinkcastError):
    pass


# --- Scheduling ---

class AccountNotFound(LinkcastError):
    pass


class StoryNotFound(LinkcastError):
    pass


class StoryLocked(LinkcastError):
    """The story is no longer pending (claimed, posted or failed)."""


class AccountInactive(LinkcastError):
    def __init__(self, message: str = "account inactive"):
        super().__init__(message)


class TokenExpired(LinkcastError):
    def __init__(self, message: str = "token expired"):
        super().__init__(message)


class UnsupportedMediaType(LinkcastError):
    pass


class PublishedNotRecorded(LinkcastError):
    """The story went out but its posted state could not be saved.

    Never retried: publishing again would post the story twice.
    """

    def __init__(self, message: str = "", external_post_id: str | None = None):
        super().__init__(message)
        self.external_post_id = external_post_id
