"""
Configuration constants for the image generator service and client.
"""
import os

from dotenv import load_dotenv

load_dotenv()

# Provider settings
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")  # read once; absence fails requests, not startup
OPENAI_API_BASE = os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1").rstrip("/")
OPENAI_IMAGE_MODEL = os.getenv("OPENAI_IMAGE_MODEL", "dall-e-3")
PROVIDER_TIMEOUT = float(os.getenv("PROVIDER_TIMEOUT", "60"))

# Server settings
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8080"))
PORT_SEARCH_LIMIT = int(os.getenv("PORT_SEARCH_LIMIT", "50"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Front-end build served in production
APP_ENV = os.getenv("APP_ENV", "development").lower()
STATIC_DIR = os.getenv("STATIC_DIR", "build")

# Tracing
OTEL_TRACING_ENABLED = os.getenv("OTEL_TRACING_ENABLED", "false").lower() == "true"
OTEL_SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "dalle-generator")

# Client settings
BACKEND_URL = os.getenv("BACKEND_URL", f"http://localhost:{PORT}").rstrip("/")
COUNTDOWN_SECONDS = int(os.getenv("COUNTDOWN_SECONDS", "30"))
REVEAL_DURATION_MS = float(os.getenv("REVEAL_DURATION_MS", "3000"))
REVEAL_MAX_BLUR = 30.0
PROMPT_TEMPLATE = os.getenv("PROMPT_TEMPLATE", "emoji of a {text}")
