"""
Async client for the generator backend, used by the lifecycle controller.

Every outcome, including network failures, is returned as a
`GenerationResult`; nothing is raised to the caller and nothing is retried.
"""
import logging
from typing import Optional

import httpx

from .config import BACKEND_URL, PROVIDER_TIMEOUT
from .errors import ErrorKind
from .models import GenerationRequest, GenerationResult
from .schemas import DEFAULT_SIZE, ImageSize

logger = logging.getLogger(__name__)

# Outlasts the backend's provider timeout.
CLIENT_TIMEOUT = PROVIDER_TIMEOUT + 5


def _kind_for(status_code: int, body: dict) -> ErrorKind:
    try:
        return ErrorKind(body.get("kind"))
    except ValueError:
        pass
    if status_code == 400:
        return ErrorKind.VALIDATION
    if body.get("error") == "API key not configured":
        return ErrorKind.CONFIGURATION
    return ErrorKind.PROVIDER


class GeneratorClient:
    def __init__(
        self,
        base_url: str = BACKEND_URL,
        timeout: float = CLIENT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def generate(self, prompt: str, size: ImageSize = DEFAULT_SIZE) -> GenerationResult:
        try:
            request = GenerationRequest(prompt, size)
        except ValueError as exc:
            return GenerationResult.failure(ErrorKind.VALIDATION, str(exc))

        url = f"{self.base_url}/api/generate-image"
        payload = {"prompt": request.prompt, "size": request.size.value}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(url, json=payload)
        except httpx.RequestError as exc:
            logger.error(f"Could not reach generator backend: {exc}")
            return GenerationResult.failure(ErrorKind.TRANSPORT, "Could not reach image generation service")

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if resp.is_success:
            image_url = body.get("imageUrl")
            if image_url:
                return GenerationResult.success(image_url)
            return GenerationResult.failure(ErrorKind.PROVIDER, "No image data returned")

        message = body.get("error") or f"Image generation failed ({resp.status_code})"
        logger.warning(f"Image generation failed ({resp.status_code}): {message}")
        return GenerationResult.failure(_kind_for(resp.status_code, body), message, body.get("details"))

    async def status(self) -> dict:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.get(f"{self.base_url}/api/status")
            resp.raise_for_status()
            return resp.json()
