from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Optional

from .errors import ErrorKind
from .schemas import DEFAULT_SIZE, ImageSize


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    size: ImageSize = DEFAULT_SIZE

    def __post_init__(self):
        if not self.prompt or not self.prompt.strip():
            raise ValueError("Prompt is required")
        object.__setattr__(self, "size", ImageSize(self.size))


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of one generation call: either `image_ref` or `kind`/`message` is set."""
    image_ref: Optional[str] = None
    kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    details: Any = None

    @property
    def ok(self) -> bool:
        return self.image_ref is not None

    @classmethod
    def success(cls, image_ref: str) -> "GenerationResult":
        return cls(image_ref=image_ref)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, details: Any = None) -> "GenerationResult":
        return cls(kind=ErrorKind(kind), message=message, details=details)
