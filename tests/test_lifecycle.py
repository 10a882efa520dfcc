"""
Tests for the request lifecycle state machine and its controller.
"""
import asyncio

import pytest
import pytest_asyncio

from dalle_generator.errors import ErrorKind
from dalle_generator.lifecycle import (
    CancelReveal,
    Error,
    Idle,
    ImageRendered,
    InputChanged,
    IssueRequest,
    LifecycleController,
    NotifyPromptRequired,
    Pending,
    ProviderFailed,
    ProviderSucceeded,
    Reset,
    RevealProgress,
    Revealing,
    Session,
    StartCountdown,
    StartReveal,
    StopCountdown,
    Submit,
    TimerTick,
    transition,
)
from dalle_generator.models import GenerationResult
from dalle_generator.reveal import RevealAnimator
from dalle_generator.schemas import ImageSize


def run(session, *events, **kwargs):
    """Apply events in order, returning the final session and all effects."""
    effects = []
    for event in events:
        result = transition(session, event, **kwargs)
        session = result.session
        effects.extend(result.effects)
    return session, effects


PENDING = Session(Pending(30), token=1, input_text="a fox")
REVEALING = Session(Revealing("https://x/y.png"), token=1)
RENDERED = Session(Revealing("https://x/y.png", rendered=True), token=1)
FAILED = Session(Error(ErrorKind.PROVIDER, "Failed to generate image"), token=1)


class TestSubmitTransitions:
    """Idle + Submit."""

    def test_empty_prompt_stays_idle(self):
        result = transition(Session(), Submit(""))

        assert result.session == Session()
        assert result.effects == (NotifyPromptRequired(),)

    def test_whitespace_prompt_stays_idle(self):
        result = transition(Session(), Submit("   "))

        assert isinstance(result.session.state, Idle)
        assert not any(isinstance(e, IssueRequest) for e in result.effects)

    def test_submit_enters_pending_and_issues_one_request(self):
        result = transition(Session(), Submit("a fox"), prompt_template="{text}")

        assert result.session == Session(Pending(30), token=1, input_text="a fox")
        assert result.effects == (
            StartCountdown(1),
            IssueRequest("a fox", ImageSize.SQUARE, 1),
        )

    def test_default_template_asks_for_emoji(self):
        result = transition(Session(), Submit("fox"))
        request = result.effects[-1]

        assert request.prompt == "emoji of a fox"

    def test_countdown_length_configurable(self):
        result = transition(Session(), Submit("fox"), countdown_seconds=5)
        assert result.session.state == Pending(5)

    def test_submit_from_pending_is_ignored(self):
        """A second submit while a call is outstanding must not issue another."""
        result = transition(PENDING, Submit("another"))

        assert result.session == PENDING
        assert result.effects == ()

    @pytest.mark.parametrize("session", [REVEALING, RENDERED, FAILED])
    def test_submit_only_from_idle(self, session):
        assert transition(session, Submit("a fox")).session == session

    def test_input_changes_buffer_only_in_idle(self):
        assert transition(Session(), InputChanged("a f")).session.input_text == "a f"
        assert transition(PENDING, InputChanged("zzz")).session == PENDING


class TestPendingTransitions:
    """Pending + TimerTick / provider results."""

    def test_tick_decrements(self):
        session, _ = run(PENDING, TimerTick(), TimerTick())
        assert session.state == Pending(28)

    def test_countdown_floors_at_zero(self):
        session, _ = run(PENDING, *[TimerTick()] * 40)
        assert session.state == Pending(0)

    def test_countdown_non_increasing(self):
        session = PENDING
        seen = []
        for _ in range(35):
            session = transition(session, TimerTick()).session
            seen.append(session.state.deadline_ticks)

        assert all(later <= earlier for earlier, later in zip(seen, seen[1:]))
        assert min(seen) == 0

    def test_success_reveals(self):
        result = transition(PENDING, ProviderSucceeded("https://x/y.png", token=1))

        assert result.session.state == Revealing("https://x/y.png", 0.0)
        assert result.effects == (StopCountdown(),)

    def test_failure_errors(self):
        result = transition(PENDING, ProviderFailed(ErrorKind.CONFIGURATION, "API key not configured", token=1))

        assert result.session.state == Error(ErrorKind.CONFIGURATION, "API key not configured")
        assert result.effects == (StopCountdown(),)

    def test_stale_token_ignored(self):
        assert transition(PENDING, ProviderSucceeded("https://x/old.png", token=0)).session == PENDING
        assert transition(PENDING, ProviderFailed(ErrorKind.PROVIDER, "x", token=0)).session == PENDING

    def test_result_after_countdown_expired_still_accepted(self):
        """The countdown is cosmetic; it never times the call out."""
        session, _ = run(PENDING, *[TimerTick()] * 30, ProviderSucceeded("https://x/y.png", token=1))
        assert isinstance(session.state, Revealing)


class TestRevealingTransitions:
    """Revealing + ImageRendered / RevealProgress."""

    def test_first_render_starts_reveal(self):
        result = transition(REVEALING, ImageRendered())

        assert result.session.state.rendered
        assert result.effects == (StartReveal(1),)

    def test_later_renders_are_noops(self):
        """The first render gates readiness; duplicates do not restart the reveal."""
        result = transition(RENDERED, ImageRendered())

        assert result.session == RENDERED
        assert result.effects == ()

    def test_progress_updates_elapsed(self):
        session, _ = run(RENDERED, RevealProgress(100, token=1), RevealProgress(900, token=1))
        assert session.state.elapsed_ms == 900

    def test_progress_never_goes_backwards(self):
        session, _ = run(RENDERED, RevealProgress(900, token=1), RevealProgress(300, token=1))
        assert session.state.elapsed_ms == 900

    def test_progress_before_render_ignored(self):
        assert transition(REVEALING, RevealProgress(500, token=1)).session == REVEALING

    def test_progress_from_old_session_ignored(self):
        assert transition(RENDERED, RevealProgress(500, token=0)).session == RENDERED


class TestReset:
    """Reset from any state."""

    @pytest.mark.parametrize("session", [Session(input_text="typed"), PENDING, REVEALING, RENDERED, FAILED])
    def test_reset_always_idle(self, session):
        result = transition(session, Reset())

        assert isinstance(result.session.state, Idle)
        assert result.session.input_text == ""

    @pytest.mark.parametrize("session", [Session(), PENDING, REVEALING, RENDERED, FAILED])
    def test_reset_idempotent(self, session):
        once, _ = run(session, Reset())
        twice, _ = run(session, Reset(), Reset())

        assert once == twice

    def test_reset_from_pending_stops_countdown(self):
        assert transition(PENDING, Reset()).effects == (StopCountdown(),)

    def test_reset_from_revealing_cancels_reveal(self):
        assert transition(RENDERED, Reset()).effects == (CancelReveal(),)

    def test_late_result_after_reset_is_discarded(self):
        session, _ = run(PENDING, Reset(), ProviderSucceeded("https://x/late.png", token=1))
        assert isinstance(session.state, Idle)

    def test_late_result_does_not_leak_into_next_request(self):
        session, _ = run(
            PENDING,
            Reset(),
            Submit("a cat"),
            ProviderSucceeded("https://x/fox.png", token=1),
        )
        assert isinstance(session.state, Pending)


class TestUndefinedEvents:
    @pytest.mark.parametrize("session,event", [
        (Session(), TimerTick()),
        (Session(), ImageRendered()),
        (Session(), ProviderSucceeded("u", token=0)),
        (PENDING, ImageRendered()),
        (REVEALING, TimerTick()),
        (FAILED, TimerTick()),
        (FAILED, ImageRendered()),
        (FAILED, ProviderSucceeded("u", token=1)),
    ])
    def test_ignored(self, session, event):
        result = transition(session, event)
        assert result.session == session
        assert result.effects == ()


class ManualGenerate:
    """Generation callable whose calls complete only when the test says so."""

    def __init__(self):
        self.calls = []
        self.futures = []

    async def __call__(self, prompt, size):
        future = asyncio.get_running_loop().create_future()
        self.calls.append((prompt, size))
        self.futures.append(future)
        return await future

    def resolve(self, result, index=-1):
        self.futures[index].set_result(result)

    def fail(self, exc, index=-1):
        self.futures[index].set_exception(exc)


class ManualSleep:
    """Sleep replacement; sleepers wake only on `fire()`."""

    def __init__(self):
        self.waiters = []

    async def __call__(self, delay):
        future = asyncio.get_running_loop().create_future()
        self.waiters.append(future)
        await future

    async def fire(self):
        waiters, self.waiters = self.waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)
        await settle()


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


async def settle(rounds: int = 5):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def generate():
    return ManualGenerate()


@pytest.fixture
def sleep():
    return ManualSleep()


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def controller(generate, sleep, clock):
    ctl = LifecycleController(
        generate,
        prompt_template="{text}",
        animator=RevealAnimator(duration_ms=3000, max_blur=30, clock=clock),
        sleep=sleep,
    )
    yield ctl
    await ctl.aclose()


class TestControllerSubmit:
    """Controller behaviour around submission."""

    @pytest.mark.asyncio
    async def test_empty_prompt_makes_no_call(self, controller, generate):
        state = controller.submit("")
        await settle()

        assert isinstance(state, Idle)
        assert generate.calls == []
        assert controller.notices == ["Please enter a prompt"]

    @pytest.mark.asyncio
    async def test_submit_uses_input_buffer(self, controller, generate):
        controller.input("a fox")
        controller.submit()
        await settle()

        assert generate.calls == [("a fox", ImageSize.SQUARE)]
        assert controller.countdown == 30
        assert controller.is_loading

    @pytest.mark.asyncio
    async def test_rapid_resubmit_issues_one_call(self, controller, generate):
        controller.submit("a fox")
        controller.submit("a fox")
        controller.submit("a cat")
        await settle()

        assert len(generate.calls) == 1
        assert controller.outstanding_requests == 1

    @pytest.mark.asyncio
    async def test_success_reaches_revealing(self, controller, generate):
        controller.submit("a fox")
        await settle()
        generate.resolve(GenerationResult.success("https://x/y.png"))
        state = await controller.wait_settled()

        assert state == Revealing("https://x/y.png", 0.0)
        assert controller.countdown is None
        assert controller.opacity == 1.0
        assert controller.blur == 30

    @pytest.mark.asyncio
    async def test_failure_reaches_error(self, controller, generate):
        controller.submit("a fox")
        await settle()
        generate.resolve(GenerationResult.failure(ErrorKind.CONFIGURATION, "API key not configured"))
        state = await controller.wait_settled()

        assert state == Error(ErrorKind.CONFIGURATION, "API key not configured")
        assert controller.opacity == 0.0

    @pytest.mark.asyncio
    async def test_exception_becomes_single_transport_failure(self, controller, generate):
        events = []
        controller.subscribe(lambda s: events.append(s.state))

        controller.submit("a fox")
        await settle()
        generate.fail(RuntimeError("socket closed"))
        state = await controller.wait_settled()

        assert state == Error(ErrorKind.TRANSPORT, "socket closed")
        assert sum(isinstance(s, Error) for s in events) == 1


class TestControllerTimers:
    """Countdown and reveal scheduling."""

    @pytest.mark.asyncio
    async def test_countdown_ticks_to_zero_and_holds(self, controller, generate, sleep):
        controller.submit("a fox")
        await settle()

        seen = []
        for _ in range(35):
            await sleep.fire()
            seen.append(controller.countdown)

        assert seen[0] == 29
        assert all(later <= earlier for earlier, later in zip(seen, seen[1:]))
        assert seen[-1] == 0
        assert isinstance(controller.state, Pending)

        generate.resolve(GenerationResult.success("https://x/y.png"))
        assert isinstance(await controller.wait_settled(), Revealing)

    @pytest.mark.asyncio
    async def test_no_ticks_after_result(self, controller, generate, sleep):
        controller.submit("a fox")
        await settle()
        generate.resolve(GenerationResult.success("https://x/y.png"))
        await controller.wait_settled()
        await sleep.fire()

        assert controller.state == Revealing("https://x/y.png", 0.0)

    @pytest.mark.asyncio
    async def test_reveal_runs_to_full_clarity(self, controller, generate, sleep, clock):
        controller.submit("a fox")
        await settle()
        generate.resolve(GenerationResult.success("https://x/y.png"))
        await controller.wait_settled()

        controller.image_rendered()
        await settle()
        assert not controller.is_loading

        blurs = [controller.blur]
        for _ in range(4):
            clock.now += 1000
            await sleep.fire()
            blurs.append(controller.blur)

        assert all(later <= earlier for earlier, later in zip(blurs, blurs[1:]))
        assert blurs[-1] == pytest.approx(0.0, abs=1e-6)
        assert controller.opacity == 1.0
        assert controller.state.elapsed_ms == 3000

    @pytest.mark.asyncio
    async def test_reset_while_pending_discards_late_result(self, controller, generate, sleep):
        controller.submit("a fox")
        await settle()
        controller.reset()
        generate.resolve(GenerationResult.success("https://x/late.png"))
        await controller.wait_settled()
        await sleep.fire()

        assert isinstance(controller.state, Idle)
        assert controller.countdown is None

    @pytest.mark.asyncio
    async def test_reset_while_revealing_cancels_animation(self, controller, generate, sleep, clock):
        controller.submit("a fox")
        await settle()
        generate.resolve(GenerationResult.success("https://x/y.png"))
        await controller.wait_settled()
        controller.image_rendered()

        controller.reset()
        clock.now += 1000
        await sleep.fire()

        assert isinstance(controller.state, Idle)
        assert not controller.animator.active

    @pytest.mark.asyncio
    async def test_new_reveal_restarts_from_zero(self, controller, generate, sleep, clock):
        for url in ("https://x/1.png", "https://x/2.png"):
            controller.submit("a fox")
            await settle()
            generate.resolve(GenerationResult.success(url))
            await controller.wait_settled()
            controller.image_rendered()
            await settle()
            clock.now += 2000
            await sleep.fire()
            assert controller.state.elapsed_ms == 2000
            controller.reset()

    @pytest.mark.asyncio
    async def test_reset_twice_equals_once(self, controller, generate):
        controller.submit("a fox")
        await settle()
        controller.reset()
        session_once = controller.session
        controller.reset()

        assert controller.session == session_once
