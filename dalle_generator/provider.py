"""
Provider adapter for the OpenAI Images API.

One call to `generate` makes exactly one outbound request and either returns
the first image URL or raises a normalized `ImageGenerationError`. Retries are
left to the caller; nothing in this service performs them.
"""
import logging
from typing import Any, Optional

import httpx

from . import config
from .errors import (
    EmptyResultError,
    MissingCredentialError,
    ProviderRejectedError,
    ProviderUnreachableError,
)
from .schemas import ImageSize

logger = logging.getLogger(__name__)

REDACTED = "***"


def redact(value: Any, secret: Optional[str]) -> Any:
    """Recursively replace occurrences of `secret` in a diagnostic payload."""
    if not secret:
        return value
    if isinstance(value, str):
        return value.replace(secret, REDACTED)
    if isinstance(value, dict):
        return {k: redact(v, secret) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(v, secret) for v in value]
    return value


class OpenAIImageProvider:
    """
    Uses OpenAI's image generation endpoint (dall-e-3 by default).

    The credential is fixed at construction; a provider without one still
    constructs and fails each call with `MissingCredentialError`.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: str = config.OPENAI_API_BASE,
        model: str = config.OPENAI_IMAGE_MODEL,
        timeout: float = config.PROVIDER_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._transport = transport

        if not self.api_key:
            logger.warning("OPENAI_API_KEY is not set; image requests will fail until it is configured")

    @property
    def url(self) -> str:
        return f"{self.api_base}/images/generations"

    async def generate(self, prompt: str, size: ImageSize) -> str:
        if not self.api_key:
            raise MissingCredentialError()

        payload = {
            "model": self.model,
            "prompt": prompt,
            "n": 1,
            "size": ImageSize(size).value,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.url, json=payload, headers=headers)
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = self._error_payload(exc.response)
            logger.error(f"Provider rejected request ({exc.response.status_code}): {detail}")
            raise ProviderRejectedError(details=detail) from exc
        except httpx.RequestError as exc:
            detail = redact(str(exc) or type(exc).__name__, self.api_key)
            logger.error(f"Could not reach image provider: {detail}")
            raise ProviderUnreachableError(details=detail) from exc

        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderRejectedError(
                details=redact("Provider returned non-JSON response", self.api_key)
            ) from exc

        images = data.get("data") if isinstance(data, dict) else None
        first = images[0] if isinstance(images, list) and images else None
        if not isinstance(first, dict) or not first.get("url"):
            logger.warning("No image data returned from API")
            raise EmptyResultError()

        logger.info("Image generated successfully")
        return first["url"]

    def _error_payload(self, response: httpx.Response) -> Any:
        try:
            body = response.json()
        except ValueError:
            body = response.text
        return redact(body, self.api_key)
