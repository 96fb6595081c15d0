"""Remote API exceptions."""

from typing import Optional


class ApiError(Exception):
    """Base exception for remote API errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[dict] = None,
    ):
        """Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code
            response_data: Response data from API
        """
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data


class AuthenticationError(ApiError):
    """Authentication error (missing or rejected token)."""

    pass


class ForbiddenError(ApiError):
    """Permission denied error."""

    pass


class RateLimitError(ApiError):
    """Rate limit exceeded error."""

    def __init__(self, message: str, retry_after: int = 60, **kwargs):
        """Initialize rate limit error.

        Args:
            message: Error message
            retry_after: Seconds to wait before retry
            **kwargs: Additional arguments for base class
        """
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class NotFoundError(ApiError):
    """Resource not found error."""

    pass


class GraphQLError(ApiError):
    """GraphQL response carried an ``errors`` array."""

    pass
