"""Error handling framework for Mergebox.

Provides custom exception types and a decorator for standardized error
handling at the boundaries to external collaborators.
"""

import logging
from functools import wraps

logger = logging.getLogger(__name__)


# Custom Exception Hierarchy
class MergeboxError(Exception):
    """Base exception for all Mergebox-specific errors."""

    pass


class QbittorrentError(MergeboxError):
    """qBittorrent Web API request failed.

    Raised when the client is unreachable, rejects the session, or returns
    a body that is not JSON.
    """

    pass


class QbittorrentResponseError(QbittorrentError):
    """qBittorrent answered, but not with the JSON shape we expect."""

    pass


class TransformError(MergeboxError):
    """ffmpeg could not be started for a job.

    Raised when the binary is missing or not executable.
    """

    pass


class SubmissionError(MergeboxError):
    """A job submission was rejected before anything was spawned.

    ``reason`` is one of ``missing-id``, ``unknown-id``, ``not-mergeable``
    or ``not-remuxable``.
    """

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


# Error Handling Decorator
def handle_errors(
    *,
    error_types: tuple[type[Exception], ...],
    default_message: str,
    log_level: str = "error",
    wrap_as: type[MergeboxError] | None = None,
):
    """Decorator for standardized error handling of async calls.

    The caught exception is logged and always raised again, either as is
    or wrapped in ``wrap_as``.

    Args:
        error_types: Tuple of exception types to catch
        default_message: Message to log when error occurs
        log_level: Logging level (error, warning, info, debug)
        wrap_as: Optionally wrap the caught exception in a MergeboxError subclass

    Example:
        @handle_errors(
            error_types=(httpx.HTTPError,),
            default_message="qBittorrent request failed",
            wrap_as=QbittorrentError,
        )
        async def fetch_categories():
            ...
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except error_types as e:
                log_func = getattr(logger, log_level)
                log_func(
                    f"{default_message}: {e}",
                    exc_info=(log_level == "error"),
                )
                if wrap_as:
                    raise wrap_as(f"{default_message}: {e}") from e
                raise

        return wrapper

    return decorator
