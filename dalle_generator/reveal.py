"""
Blur-to-clear reveal of a freshly generated image.

The visual state is a pure function of elapsed time, so the animator can be
driven by any scheduler (or a fake clock in tests). Opacity is fully on for
the whole reveal; only the blur radius eases out.
"""
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .config import REVEAL_DURATION_MS, REVEAL_MAX_BLUR


def ease_out_cubic(progress: float) -> float:
    return 1 - (1 - progress) ** 3


def blur_at(elapsed_ms: float, duration_ms: float = REVEAL_DURATION_MS, max_blur: float = REVEAL_MAX_BLUR) -> float:
    """Blur radius in px after `elapsed_ms` of the reveal."""
    if duration_ms <= 0:
        return 0.0
    progress = min(max(elapsed_ms, 0.0) / duration_ms, 1.0)
    return max_blur * (1 - ease_out_cubic(progress))


@dataclass(frozen=True)
class RevealFrame:
    elapsed_ms: float
    blur: float
    opacity: float
    done: bool


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class RevealAnimator:
    """
    Tracks one reveal run.

    `start()` (re)starts at t=0; `sample()` computes the frame for the current
    clock reading and returns None once cancelled, so stray scheduled ticks
    are harmless.
    """

    def __init__(
        self,
        duration_ms: float = REVEAL_DURATION_MS,
        max_blur: float = REVEAL_MAX_BLUR,
        clock: Callable[[], float] = _monotonic_ms,
    ):
        self.duration_ms = duration_ms
        self.max_blur = max_blur
        self._clock = clock
        self._started_at: Optional[float] = None

    @property
    def active(self) -> bool:
        return self._started_at is not None

    def start(self) -> RevealFrame:
        self._started_at = self._clock()
        return self.frame_at(0.0)

    def cancel(self) -> None:
        self._started_at = None

    def frame_at(self, elapsed_ms: float) -> RevealFrame:
        elapsed_ms = max(elapsed_ms, 0.0)
        return RevealFrame(
            elapsed_ms=elapsed_ms,
            blur=blur_at(elapsed_ms, self.duration_ms, self.max_blur),
            opacity=1.0,
            done=elapsed_ms >= self.duration_ms,
        )

    def sample(self) -> Optional[RevealFrame]:
        if self._started_at is None:
            return None
        return self.frame_at(self._clock() - self._started_at)
