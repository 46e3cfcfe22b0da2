"""
Error taxonomy for review operations.

Each error carries the HTTP status the transport layer answers with.
"""


class ReviewsError(Exception):
    """Base class for errors surfaced by the review facade."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidArgument(ReviewsError):
    """A required input is missing or malformed."""

    status_code = 400


class NotFound(ReviewsError):
    """No review or metadata row matched the request."""

    status_code = 404


class Internal(ReviewsError):
    """Database failure, failed transaction or serialization error."""

    status_code = 500
