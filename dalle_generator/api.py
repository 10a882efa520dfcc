"""
FastAPI application for the image generator proxy.

Endpoints:
- POST /api/generate-image: Generate an image from a prompt via the provider
- GET /api/status: Liveness and effective port
"""
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from . import config
from .errors import ErrorKind, ImageGenerationError
from .provider import OpenAIImageProvider
from .schemas import (
    ErrorResponse,
    GenerateImageRequest,
    GenerateImageResponse,
    StatusResponse,
)
from .tracing import init_tracing

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

PROMPT_LOG_CHARS = 30


def _error(status_code: int, body: ErrorResponse) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", exclude_none=True),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the provider once; the credential is fixed for the process lifetime."""
    if getattr(app.state, "provider", None) is None:
        app.state.provider = OpenAIImageProvider(api_key=config.OPENAI_API_KEY)
    logger.info(f"Image generator ready (model={app.state.provider.model})")
    yield
    logger.info("Shutting down image generator...")


app = FastAPI(
    title="Image Generator",
    description="Proxy that generates images from short prompts without exposing the provider key",
    version="1.0.0",
    lifespan=lifespan,
)
app.state.port = config.PORT

if config.OTEL_TRACING_ENABLED:
    init_tracing(app)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_provider(request: Request) -> OpenAIImageProvider:
    return request.app.state.provider


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report malformed bodies as client errors; no provider call is made."""
    errors = exc.errors()
    if errors and all(e.get("type") == "missing" and tuple(e.get("loc", ())) == ("body",) for e in errors):
        return _error(status.HTTP_400_BAD_REQUEST, ErrorResponse(error="Prompt is required"))
    return _error(
        status.HTTP_400_BAD_REQUEST,
        ErrorResponse(
            error="Invalid request",
            kind=ErrorKind.VALIDATION,
            details=[{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in errors],
        ),
    )


@app.post(
    "/api/generate-image",
    response_model=GenerateImageResponse,
    responses={
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def generate_image(
    req: GenerateImageRequest,
    provider: OpenAIImageProvider = Depends(get_provider),
):
    """
    Generate a single image for the prompt.

    The provider is called at most once; failures come back as a 500 carrying
    the normalized error kind and an optional diagnostic payload.
    """
    if not req.prompt or not req.prompt.strip():
        return _error(status.HTTP_400_BAD_REQUEST, ErrorResponse(error="Prompt is required"))

    logger.info(f'Processing image generation request for prompt: "{req.prompt[:PROMPT_LOG_CHARS]}..."')

    try:
        image_url = await provider.generate(req.prompt, req.size)
    except ImageGenerationError as exc:
        logger.error(f"Error generating image ({exc.kind.value}): {exc.message}")
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            ErrorResponse(error=exc.message, kind=exc.kind, details=exc.details),
        )

    return GenerateImageResponse(image_url=image_url)


@app.get("/api/status", response_model=StatusResponse)
async def server_status(request: Request):
    """Simple status endpoint."""
    return StatusResponse(port=request.app.state.port)


def register_frontend(target: FastAPI, directory: str) -> None:
    """
    Serve a built single-page front end from `directory`.

    Existing files are returned as-is; every other GET path falls back to
    index.html so client-side routing works. Must be registered after the
    API routes.
    """
    root = Path(directory).resolve()
    index = root / "index.html"

    @target.get("/{full_path:path}", include_in_schema=False)
    async def serve_frontend(full_path: str):
        candidate = (root / full_path).resolve()
        if full_path and candidate.is_file() and root in candidate.parents:
            return FileResponse(candidate)
        if index.is_file():
            return FileResponse(index)
        raise HTTPException(status_code=404, detail="Not found")


if config.APP_ENV == "production":
    logger.info(f"Serving front-end build from {config.STATIC_DIR}")
    register_frontend(app, config.STATIC_DIR)


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler."""
    logger.exception("Unhandled exception")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )
