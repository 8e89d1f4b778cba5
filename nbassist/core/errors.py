"""Error taxonomy for the assist pipeline."""


class AssistError(Exception):
    """Base exception for all assist pipeline errors."""


class ProviderUnavailable(AssistError):
    """
    An embedding or completion call failed.

    Raised when:
    - The provider is unreachable or times out
    - Authentication fails or the request is rate limited
    - The selected AI service is not configured
    """

    def __init__(self, message: str, provider: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class PersistenceFailure(AssistError):
    """Reading or writing a document's embedding store failed."""


class StaleCancellation(AssistError):
    """An operation finished after its owning session was superseded.

    Never user-visible; callers log it at debug level and drop it.
    """


class MalformedResponse(AssistError):
    """A provider returned data that cannot be parsed into a vector or chunk."""
