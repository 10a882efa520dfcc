#!/usr/bin/env python3
"""
Terminal front end for the image generator.

Usage:
    dalle-generator serve                      # Run the API (probes for a free port)
    dalle-generator generate "a fox"           # Generate through a running server
    dalle-generator generate "a fox" --size 1792x1024 --url http://host:port
    dalle-generator status                     # Show server status
"""
import argparse
import asyncio
import sys
from typing import List, Optional

import httpx

from .config import BACKEND_URL, COUNTDOWN_SECONDS, HOST, PORT, REVEAL_DURATION_MS
from .client import GeneratorClient
from .lifecycle import Error, LifecycleController, Pending, Revealing, Session
from .reveal import RevealAnimator
from .schemas import DEFAULT_SIZE, ImageSize


class TerminalView:
    """Prints the user-visible parts of each state change once."""

    def __init__(self, out=sys.stdout, reveal_duration_ms: float = REVEAL_DURATION_MS):
        self.out = out
        self.reveal_duration_ms = reveal_duration_ms
        self._last_countdown: Optional[int] = None
        self._last_blur_step: Optional[int] = None

    def __call__(self, session: Session) -> None:
        state = session.state
        if isinstance(state, Pending):
            if state.deadline_ticks != self._last_countdown:
                self._last_countdown = state.deadline_ticks
                print(f"{state.deadline_ticks:>3}", file=self.out, flush=True)
        elif isinstance(state, Revealing):
            if not state.rendered:
                print(f"Image ready: {state.image_ref}", file=self.out, flush=True)
                return
            # report the reveal in quarter steps
            step = 4 if self.reveal_duration_ms <= 0 else int(min(state.elapsed_ms / self.reveal_duration_ms * 4, 4))
            if step != self._last_blur_step:
                self._last_blur_step = step
                print(f"Revealing... {step * 25}%", file=self.out, flush=True)
        elif isinstance(state, Error):
            print(f"Error ({state.kind.value}): {state.message}", file=self.out, flush=True)


async def run_generate(
    text: str,
    size: ImageSize = DEFAULT_SIZE,
    base_url: str = BACKEND_URL,
    countdown_seconds: int = COUNTDOWN_SECONDS,
    client: Optional[GeneratorClient] = None,
    animator: Optional[RevealAnimator] = None,
    out=sys.stdout,
) -> int:
    client = client or GeneratorClient(base_url)
    controller = LifecycleController(client.generate, countdown_seconds=countdown_seconds, animator=animator)
    controller.subscribe(TerminalView(out, controller.animator.duration_ms))

    try:
        controller.input(text)
        controller.submit(size=size)
        if controller.notices:
            print(controller.notices[-1], file=out)
            return 2

        state = await controller.wait_settled()
        if isinstance(state, Revealing):
            # nothing to load in a terminal; the image counts as rendered immediately
            controller.image_rendered()
            await controller.wait_revealed()
            print(state.image_ref, file=out)
            return 0
        return 1
    finally:
        await controller.aclose()


async def run_status(
    base_url: str = BACKEND_URL,
    client: Optional[GeneratorClient] = None,
    out=sys.stdout,
) -> int:
    client = client or GeneratorClient(base_url)
    try:
        data = await client.status()
    except httpx.HTTPError as exc:
        print(f"Server not available at {client.base_url}: {exc}", file=out)
        return 1
    print(f"{data.get('status')} (port {data.get('port')})", file=out)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dalle-generator", description="Generate images from short prompts")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default=HOST)
    serve.add_argument("--port", type=int, default=PORT)

    gen = sub.add_parser("generate", help="Generate an image through a running server")
    gen.add_argument("prompt", nargs="?", default="")
    gen.add_argument("--size", choices=[s.value for s in ImageSize], default=DEFAULT_SIZE.value)
    gen.add_argument("--url", default=BACKEND_URL, help="Backend base URL")
    gen.add_argument("--countdown", type=int, default=COUNTDOWN_SECONDS)

    status = sub.add_parser("status", help="Show backend status")
    status.add_argument("--url", default=BACKEND_URL, help="Backend base URL")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        from .server import main as serve_main
        serve_main(host=args.host, port=args.port)
        return 0
    if args.command == "generate":
        return asyncio.run(run_generate(
            args.prompt,
            size=ImageSize(args.size),
            base_url=args.url,
            countdown_seconds=args.countdown,
        ))
    return asyncio.run(run_status(args.url))


if __name__ == "__main__":
    sys.exit(main())
