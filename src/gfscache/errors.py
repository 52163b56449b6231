"""
Exception hierarchy for gfs-cache.

Running past the lookback horizon or a search limit is not an error: it is
reported as an ``UNAVAILABLE`` fetch outcome or a ``NOT_FOUND`` serve result.
"""

from __future__ import annotations


class GribCacheError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(GribCacheError):
    """Settings could not be loaded or failed validation."""


class TransportError(GribCacheError):
    """
    Network-level failure talking to the provider.

    Raised when:
    - DNS, TLS or connection setup fails
    - the connection drops while the body is being streamed
    """


class UpstreamUnavailable(GribCacheError):
    """The provider answered, but not with a publishable snapshot (non-200)."""

    def __init__(self, key: str, status_code: int) -> None:
        super().__init__(f"Provider returned {status_code} for {key}")
        self.key = key
        self.status_code = status_code


class ConversionError(GribCacheError):
    """
    The external GRIB to JSON converter failed.

    Raised when:
    - the converter exits non-zero or times out
    - the converter executable cannot be started
    - the raw artifact to convert is missing and cannot be re-fetched
    """


class FilesystemError(GribCacheError):
    """Reading or writing a cache artifact failed (permissions, disk full, ...)."""
