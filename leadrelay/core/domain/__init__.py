"""
Domain Layer

Error taxonomy shared by every component of the messaging core.
"""

from leadrelay.core.domain.errors import (
    AuthenticationError,
    CircuitOpenError,
    ErrorKind,
    MessagingError,
    ProviderAPIError,
    RateLimitError,
    ValidationError,
    map_provider_error,
)

__all__ = [
    "AuthenticationError",
    "CircuitOpenError",
    "ErrorKind",
    "MessagingError",
    "ProviderAPIError",
    "RateLimitError",
    "ValidationError",
    "map_provider_error",
]
