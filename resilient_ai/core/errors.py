"""
Error taxonomy for orchestration.

Only ``invalid_input`` ever reaches a caller as a failed result. Provider
errors are raised by the transport layer and absorbed by the dispatcher,
which moves on to the next provider.
"""

from enum import Enum


class ErrorKind(Enum):
    """Classification of everything that can go wrong during a request."""
    INVALID_INPUT = "invalid_input"                        # fatal, caller-visible
    PROVIDER_UNAVAILABLE = "provider_unavailable"          # no key or quota
    PROVIDER_TRANSPORT_ERROR = "provider_transport_error"  # timeout, network, non-2xx
    PROVIDER_SHAPE_ERROR = "provider_shape_error"          # unusable response body
    INTERNAL_ERROR = "internal_error"


class InvalidInputError(ValueError):
    """Raised when a request payload or its options are malformed."""
    kind = ErrorKind.INVALID_INPUT


class InvalidCredentialError(ValueError):
    """Raised when an API key fails format validation."""


class ProviderError(Exception):
    """Base class for failures attributable to one provider attempt."""
    kind = ErrorKind.PROVIDER_TRANSPORT_ERROR

    def __init__(self, provider_id: str, message: str):
        super().__init__(f"{provider_id}: {message}")
        self.provider_id = provider_id


class ProviderTransportError(ProviderError):
    """Timeout, connection failure or non-2xx status."""
    kind = ErrorKind.PROVIDER_TRANSPORT_ERROR


class ProviderShapeError(ProviderError):
    """The response did not contain the expected payload."""
    kind = ErrorKind.PROVIDER_SHAPE_ERROR
