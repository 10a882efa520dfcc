"""
Process bootstrap: pick a free port and run the API under uvicorn.

If the configured port is taken the next ports are probed upward until one
binds. The effective port is stored on `app.state.port` so GET /api/status
reports it.
"""
import errno
import logging
import socket
from typing import Optional

import uvicorn

from . import config
from .api import app

logger = logging.getLogger(__name__)


def port_is_free(port: int, host: str = config.HOST) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError as exc:
            if exc.errno in (errno.EADDRINUSE, errno.EACCES):
                return False
            raise
    return True


def find_available_port(start: int, host: str = config.HOST, limit: int = config.PORT_SEARCH_LIMIT) -> int:
    """Return the first port >= start that can be bound, trying at most `limit` ports."""
    for port in range(start, min(start + limit, 65536)):
        if port_is_free(port, host):
            return port
        logger.warning(f"Port {port} is in use. Trying to find an available port...")
    raise OSError(errno.EADDRINUSE, f"No free port in range {start}-{start + limit - 1}")


def startup_messages(port: int, configured_port: int) -> list:
    lines = [
        f"Server running on port {port}",
        f"API Status: http://localhost:{port}/api/status",
    ]
    if port != configured_port:
        lines.append(
            f"Configured port {configured_port} was busy; front-end proxies pointing at "
            f"http://localhost:{configured_port} must be updated to http://localhost:{port}"
        )
    return lines


def serve(host: str = config.HOST, port: Optional[int] = None) -> None:
    configured_port = port or config.PORT
    effective_port = find_available_port(configured_port, host)
    app.state.port = effective_port

    messages = startup_messages(effective_port, configured_port)
    for line in messages[:2]:
        logger.info(line)
    for line in messages[2:]:
        logger.warning(line)

    uvicorn.run(app, host=host, port=effective_port, log_level=config.LOG_LEVEL.lower())


def main(host: str = config.HOST, port: Optional[int] = None) -> None:
    try:
        serve(host=host, port=port)
    except OSError as exc:
        logger.error(f"Failed to start server: {exc}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
