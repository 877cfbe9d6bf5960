"""
Error Taxonomy
Every failure the services raise derives from ExamPortalError.
"""
from typing import Optional


class ExamPortalError(Exception):
    """Base class for all Exam Portal errors."""


class FormatError(ExamPortalError):
    """Tabular input could not be parsed at all."""


class ValidationError(ExamPortalError):
    """A record (or a whole import) failed a required-field check."""

    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.index = index


class StoreUnavailable(ExamPortalError):
    """The document store could not be reached or rejected the request."""


class AuthFailure(ExamPortalError):
    """Credentials did not match. Never says which field was wrong."""

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class ExamNotFound(ExamPortalError, LookupError):
    """No built-in or stored exam has the requested id."""
