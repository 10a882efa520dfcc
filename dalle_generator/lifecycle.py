"""
Client-side request lifecycle: input -> pending countdown -> reveal -> error/reset.

The state machine is split in two:

- `transition(session, event)` is pure. It returns the next `Session` and a
  tuple of effects (start/stop timers, issue the request, ...) without
  touching a clock or the network, so every row of the table can be tested
  directly.
- `LifecycleController` owns the live session, executes effects on the
  running asyncio loop, and feeds timer ticks, animation frames and provider
  results back in as events, strictly in arrival order.

Every generation call is tagged with the session token that was live when it
was issued. `Reset` bumps the token, so a result arriving for a superseded
session no longer matches and is dropped.
"""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, List, Optional, Tuple, Union

from .config import COUNTDOWN_SECONDS, PROMPT_TEMPLATE
from .errors import ErrorKind
from .models import GenerationResult
from .reveal import RevealAnimator, blur_at
from .schemas import DEFAULT_SIZE, ImageSize

logger = logging.getLogger(__name__)


# States

@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Pending:
    deadline_ticks: int


@dataclass(frozen=True)
class Revealing:
    image_ref: str
    elapsed_ms: float = 0.0
    rendered: bool = False  # first ImageRendered seen; loading is over


@dataclass(frozen=True)
class Error:
    kind: ErrorKind
    message: str


LifecycleState = Union[Idle, Pending, Revealing, Error]


@dataclass(frozen=True)
class Session:
    state: LifecycleState = field(default_factory=Idle)
    token: int = 0
    input_text: str = ""


# Events

@dataclass(frozen=True)
class InputChanged:
    text: str


@dataclass(frozen=True)
class Submit:
    text: str
    size: ImageSize = DEFAULT_SIZE


@dataclass(frozen=True)
class ProviderSucceeded:
    image_ref: str
    token: int


@dataclass(frozen=True)
class ProviderFailed:
    kind: ErrorKind
    message: str
    token: int


@dataclass(frozen=True)
class TimerTick:
    pass


@dataclass(frozen=True)
class ImageRendered:
    pass


@dataclass(frozen=True)
class RevealProgress:
    elapsed_ms: float
    token: int


@dataclass(frozen=True)
class Reset:
    pass


Event = Union[InputChanged, Submit, ProviderSucceeded, ProviderFailed, TimerTick, ImageRendered, RevealProgress, Reset]


# Effects

@dataclass(frozen=True)
class IssueRequest:
    prompt: str
    size: ImageSize
    token: int


@dataclass(frozen=True)
class StartCountdown:
    token: int


@dataclass(frozen=True)
class StopCountdown:
    pass


@dataclass(frozen=True)
class StartReveal:
    token: int


@dataclass(frozen=True)
class CancelReveal:
    pass


@dataclass(frozen=True)
class NotifyPromptRequired:
    message: str = "Please enter a prompt"


Effect = Union[IssueRequest, StartCountdown, StopCountdown, StartReveal, CancelReveal, NotifyPromptRequired]


@dataclass(frozen=True)
class Transition:
    session: Session
    effects: Tuple[Effect, ...] = ()


def transition(
    session: Session,
    event: Event,
    countdown_seconds: int = COUNTDOWN_SECONDS,
    prompt_template: str = PROMPT_TEMPLATE,
) -> Transition:
    """Next session and effects for `event`. Events a state does not define leave it unchanged."""
    state = session.state

    if isinstance(event, Reset):
        if isinstance(state, Idle):
            return Transition(replace(session, input_text=""))
        effects: List[Effect] = []
        if isinstance(state, Pending):
            effects.append(StopCountdown())
        if isinstance(state, Revealing):
            effects.append(CancelReveal())
        return Transition(Session(Idle(), session.token + 1, ""), tuple(effects))

    if isinstance(state, Idle):
        if isinstance(event, InputChanged):
            return Transition(replace(session, input_text=event.text))
        if isinstance(event, Submit):
            text = event.text.strip()
            if not text:
                return Transition(session, (NotifyPromptRequired(),))
            token = session.token + 1
            prompt = prompt_template.format(text=text)
            return Transition(
                Session(Pending(countdown_seconds), token, event.text),
                (StartCountdown(token), IssueRequest(prompt, ImageSize(event.size), token)),
            )

    elif isinstance(state, Pending):
        if isinstance(event, TimerTick):
            return Transition(replace(session, state=Pending(max(state.deadline_ticks - 1, 0))))
        if isinstance(event, ProviderSucceeded) and event.token == session.token:
            return Transition(replace(session, state=Revealing(event.image_ref)), (StopCountdown(),))
        if isinstance(event, ProviderFailed) and event.token == session.token:
            return Transition(replace(session, state=Error(event.kind, event.message)), (StopCountdown(),))

    elif isinstance(state, Revealing):
        if isinstance(event, ImageRendered):
            if state.rendered:
                return Transition(session)
            return Transition(
                replace(session, state=replace(state, rendered=True)),
                (StartReveal(session.token),),
            )
        if isinstance(event, RevealProgress) and state.rendered and event.token == session.token:
            elapsed = max(state.elapsed_ms, event.elapsed_ms)
            return Transition(replace(session, state=replace(state, elapsed_ms=elapsed)))

    return Transition(session)


GenerateFn = Callable[[str, ImageSize], Awaitable[GenerationResult]]
Listener = Callable[[Session], None]


class LifecycleController:
    """
    Drives one UI session.

    `generate` is awaited once per accepted submit and must resolve to a
    `GenerationResult`; an exception is reported as a transport failure so
    every call yields exactly one result event.
    """

    def __init__(
        self,
        generate: GenerateFn,
        countdown_seconds: int = COUNTDOWN_SECONDS,
        prompt_template: str = PROMPT_TEMPLATE,
        tick_interval: float = 1.0,
        frame_interval: float = 1 / 60,
        animator: Optional[RevealAnimator] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._generate = generate
        self.countdown_seconds = countdown_seconds
        self.prompt_template = prompt_template
        self.tick_interval = tick_interval
        self.frame_interval = frame_interval
        self.animator = animator or RevealAnimator()
        self._sleep = sleep

        self._session = Session()
        self._listeners: List[Listener] = []
        self._notices: List[str] = []
        self._queue: deque = deque()
        self._dispatching = False
        self._countdown_task: Optional[asyncio.Task] = None
        self._reveal_task: Optional[asyncio.Task] = None
        self._requests: set = set()

    # Read-only views

    @property
    def session(self) -> Session:
        return self._session

    @property
    def state(self) -> LifecycleState:
        return self._session.state

    @property
    def token(self) -> int:
        return self._session.token

    @property
    def countdown(self) -> Optional[int]:
        state = self._session.state
        return state.deadline_ticks if isinstance(state, Pending) else None

    @property
    def is_loading(self) -> bool:
        state = self._session.state
        return isinstance(state, Pending) or (isinstance(state, Revealing) and not state.rendered)

    @property
    def blur(self) -> float:
        state = self._session.state
        if isinstance(state, Revealing):
            return blur_at(state.elapsed_ms, self.animator.duration_ms, self.animator.max_blur)
        return self.animator.max_blur

    @property
    def opacity(self) -> float:
        return 1.0 if isinstance(self._session.state, Revealing) else 0.0

    @property
    def notices(self) -> List[str]:
        return list(self._notices)

    @property
    def outstanding_requests(self) -> int:
        return len(self._requests)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    # Event entry points

    def dispatch(self, event: Event) -> LifecycleState:
        """Process `event` (and anything it triggers) in arrival order."""
        self._queue.append(event)
        if self._dispatching:
            return self._session.state

        self._dispatching = True
        try:
            while self._queue:
                self._apply(self._queue.popleft())
        finally:
            self._dispatching = False
        return self._session.state

    def input(self, text: str) -> LifecycleState:
        return self.dispatch(InputChanged(text))

    def submit(self, text: Optional[str] = None, size: ImageSize = DEFAULT_SIZE) -> LifecycleState:
        return self.dispatch(Submit(self._session.input_text if text is None else text, size))

    def image_rendered(self) -> LifecycleState:
        return self.dispatch(ImageRendered())

    def reset(self) -> LifecycleState:
        return self.dispatch(Reset())

    async def wait_settled(self) -> LifecycleState:
        """Wait until no generation call is outstanding."""
        while self._requests:
            await asyncio.gather(*list(self._requests), return_exceptions=True)
        return self._session.state

    async def wait_revealed(self) -> LifecycleState:
        """Wait for the running reveal animation, if any, to finish."""
        task = self._reveal_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self._session.state

    async def aclose(self) -> None:
        """Cancel timers and outstanding calls."""
        self._stop_countdown()
        self._cancel_reveal()
        pending = list(self._requests)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # Internals

    def _apply(self, event: Event) -> None:
        result = transition(
            self._session,
            event,
            countdown_seconds=self.countdown_seconds,
            prompt_template=self.prompt_template,
        )
        if result.session == self._session and not result.effects:
            logger.debug(f"Ignored {type(event).__name__} in {type(self._session.state).__name__}")
            return

        previous = self._session.state
        self._session = result.session
        if type(previous) is not type(self._session.state):
            logger.info(f"Lifecycle {type(previous).__name__} -> {type(self._session.state).__name__}")

        for effect in result.effects:
            self._run_effect(effect)

        for listener in list(self._listeners):
            listener(self._session)

    def _run_effect(self, effect: Effect) -> None:
        if isinstance(effect, IssueRequest):
            task = asyncio.get_running_loop().create_task(self._call_provider(effect))
            self._requests.add(task)
            task.add_done_callback(self._requests.discard)
        elif isinstance(effect, StartCountdown):
            self._stop_countdown()
            self._countdown_task = asyncio.get_running_loop().create_task(self._run_countdown(effect.token))
        elif isinstance(effect, StopCountdown):
            self._stop_countdown()
        elif isinstance(effect, StartReveal):
            self._cancel_reveal()
            self.animator.start()
            self._reveal_task = asyncio.get_running_loop().create_task(self._run_reveal(effect.token))
        elif isinstance(effect, CancelReveal):
            self._cancel_reveal()
        elif isinstance(effect, NotifyPromptRequired):
            logger.warning(effect.message)
            self._notices.append(effect.message)

    def _stop_countdown(self) -> None:
        task, self._countdown_task = self._countdown_task, None
        if task is not None and not task.done():
            task.cancel()

    def _cancel_reveal(self) -> None:
        self.animator.cancel()
        task, self._reveal_task = self._reveal_task, None
        if task is not None and not task.done():
            task.cancel()

    async def _call_provider(self, effect: IssueRequest) -> None:
        try:
            result = await self._generate(effect.prompt, effect.size)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Generation call failed")
            result = GenerationResult.failure(ErrorKind.TRANSPORT, str(exc) or "Failed to generate image")

        if result.ok:
            self.dispatch(ProviderSucceeded(result.image_ref, effect.token))
        else:
            self.dispatch(ProviderFailed(result.kind or ErrorKind.PROVIDER, result.message or "", effect.token))

    async def _run_countdown(self, token: int) -> None:
        while True:
            await self._sleep(self.tick_interval)
            state = self._session.state
            if self._session.token != token or not isinstance(state, Pending):
                return
            self.dispatch(TimerTick())
            if self.countdown == 0:
                return

    async def _run_reveal(self, token: int) -> None:
        while True:
            await self._sleep(self.frame_interval)
            frame = self.animator.sample()
            if frame is None or self._session.token != token:
                return
            self.dispatch(RevealProgress(frame.elapsed_ms, token))
            if frame.done:
                return
