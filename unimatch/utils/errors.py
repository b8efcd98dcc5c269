"""Typed failures raised by the UniMatch services.

Every error carries an HTTP status code so the API layer can translate it
without a lookup table, plus an optional ``details`` dict that is merged
into the JSON error body.
"""

from typing import Any, Dict, Optional


class UniMatchError(Exception):
    """Base exception for all UniMatch errors."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        """
        Initialize the error with a message and optional details.

        Args:
            message (str): Error message describing what went wrong.
            details (Optional[Dict[str, Any]]): Additional context returned to the caller.
        """
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(UniMatchError):
    """Raised when a referenced user, conversation or message does not exist."""

    status_code = 404


class ForbiddenError(UniMatchError):
    """Raised when the acting user has no rights over the resource."""

    status_code = 403


class ValidationError(UniMatchError):
    """Raised when input falls outside its declared bounds."""

    status_code = 422


class ConflictError(UniMatchError):
    """Raised when a uniqueness rule (e.g. email) would be violated."""

    status_code = 409


class ProfileIncompleteError(UniMatchError):
    """Raised when matching is requested before the profile is finished."""

    status_code = 400


class AlreadyLikedError(UniMatchError):
    """Raised on a repeated like, or a dislike of a currently liked user."""

    status_code = 409


class AlreadyDislikedError(UniMatchError):
    """Raised on a repeated dislike."""

    status_code = 409


class NotMatchedError(UniMatchError):
    """Raised when chat is requested for a pair that is not mutually matched."""

    status_code = 403
