"""Exception hierarchy for discovery, probing and notification."""


class SourceError(Exception):
    """Base exception for all branch source errors."""


class AbortError(SourceError):
    """The current retrieval was aborted. The message is user-facing."""


class TransportError(SourceError):
    """HTTP or network level failure talking to Azure DevOps."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(TransportError):
    """Azure DevOps throttled the request (HTTP 429)."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class NotFoundError(SourceError):
    """A required remote object does not exist."""


class ClosedError(SourceError):
    """Operation attempted on a probe, filesystem or request that was closed."""

    def __init__(self, message: str = "Closed") -> None:
        super().__init__(message)


class WrappedError(SourceError):
    """Carries a failure out of a lazy iterator.

    The original exception is the ``__cause__``; use :func:`unwrap` to get it.
    """


def unwrap(exc: BaseException) -> BaseException:
    """Return the innermost exception hidden behind WrappedError carriers."""
    while isinstance(exc, WrappedError) and exc.__cause__ is not None:
        exc = exc.__cause__
    return exc
