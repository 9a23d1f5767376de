"""
Error taxonomy shared by the backend components.

Not-found results are modelled as ``None`` rather than an exception; only the
HTTP routes translate these into status codes.
"""

from __future__ import annotations

from typing import Optional


class BlogBackendError(Exception):
    """Base class for errors raised by backend components."""


class ConfigurationError(BlogBackendError):
    """A required setting is missing. Fatal; never retried."""


class ValidationError(BlogBackendError):
    """Malformed input to a write operation."""


class UpstreamError(BlogBackendError):
    """A call to the CMS, object storage or a third-party API failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
