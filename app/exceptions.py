"""
Error types shared by the retrieval, research and persistence layers.
"""
from typing import Optional


class ExternalServiceError(Exception):
    """An external API answered with a non-2xx status or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(ExternalServiceError):
    """The external API returned 429. Message is safe to show to users."""

    def __init__(self, message: str = "Rate limit exceeded. Please try again in a moment."):
        super().__init__(message, status_code=429)


class EmbeddingError(Exception):
    """The embedding provider failed to produce a vector."""
    pass


class NotFoundError(ExternalServiceError):
    """The API returned 404. Single-resource lookups map this to None."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=404)
