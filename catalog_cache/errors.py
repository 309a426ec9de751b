"""
Error taxonomy for the catalog cache.

Upstream failures are raised by the catalog client as typed exceptions so
the sync coordinator can decide, per error class, whether to count and
continue, back off and retry, or abort the run.  Capacity pressure is not
an error: the volatile backend evicts silently.
"""

from typing import Optional


class CatalogCacheError(Exception):
    """Base class for every error raised by this package."""


class UpstreamError(CatalogCacheError):
    """Network failure, timeout, 5xx or malformed response from the upstream catalog."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFound(UpstreamError):
    """The upstream catalog has no item with the requested id."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Catalog item not found: {key}", status_code=404)
        self.key = key


class RateLimited(UpstreamError):
    """The upstream catalog asked the caller to slow down.

    ``retry_after`` is the upstream-specified delay in seconds, or ``None``
    when the response carried no usable hint.
    """

    def __init__(self, retry_after: Optional[float] = None) -> None:
        hint = f" (retry after {retry_after:.1f}s)" if retry_after is not None else ""
        super().__init__(f"Upstream rate limit reached{hint}", status_code=429)
        self.retry_after = retry_after


class AuthenticationError(UpstreamError):
    """Credentials were rejected.  Non-recoverable: retrying cannot succeed."""


class NormalizationError(CatalogCacheError, ValueError):
    """An upstream item could not be turned into a cache payload."""


class BackendError(CatalogCacheError):
    """The durable storage engine failed a read or write."""


class SyncAlreadyRunning(CatalogCacheError):
    """A sync was requested while another run is still in flight."""

    def __init__(self) -> None:
        super().__init__("sync already running")
