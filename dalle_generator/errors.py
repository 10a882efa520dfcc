"""
Error taxonomy shared by the provider adapter, the HTTP endpoint and the client.
"""
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    VALIDATION = "ValidationError"
    CONFIGURATION = "ConfigurationError"
    PROVIDER = "ProviderError"
    TRANSPORT = "TransportError"


class ImageGenerationError(Exception):
    """
    Base class for normalized generation failures.

    `details` is an opaque diagnostic payload (provider error body or network
    message). It is always scrubbed of the credential before it is attached.
    """

    kind: ErrorKind = ErrorKind.PROVIDER
    default_message = "Failed to generate image"

    def __init__(self, message: Optional[str] = None, details: Any = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class MissingCredentialError(ImageGenerationError):
    """No API key configured; raised before any outbound call."""

    kind = ErrorKind.CONFIGURATION
    default_message = "API key not configured"


class ProviderRejectedError(ImageGenerationError):
    """Provider answered with an error payload (bad prompt, rate limit, policy)."""

    kind = ErrorKind.PROVIDER


class ProviderUnreachableError(ImageGenerationError):
    """Network failure or timeout talking to the provider."""

    kind = ErrorKind.TRANSPORT


class EmptyResultError(ImageGenerationError):
    """Provider reported success but returned no image."""

    kind = ErrorKind.PROVIDER
    default_message = "No image data returned from API"
