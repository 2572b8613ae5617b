"""
Error types for tide curve synthesis and the upstream data source.
"""
from typing import Optional


class TideError(Exception):
    """Base class for tide service errors."""


class MalformedInputError(TideError, ValueError):
    """
    Raised when extremes cannot be interpolated safely.

    Covers timestamps that are not strictly ascending and non-finite
    timestamp or height values.
    """


class UpstreamUnavailableError(TideError):
    """
    Raised when the upstream tide API cannot produce usable extremes.

    Args:
        message: Human readable description of the failure
        status_code: HTTP status code returned by the upstream, if any
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
