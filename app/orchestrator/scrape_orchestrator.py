"""ADSCOUT — Scrape Job Orchestrator.

Tracks one external scrape run from trigger to a terminal state without
blocking the caller:

  IDLE → TRIGGERED → POLLING → COMPLETED | FAILED | TIMED_OUT
  (any non-terminal state) → CANCELLED, silently, via cancel()

Two timers share one TaskGroup per run. The poll timer checks the run
immediately and then every `poll_interval` seconds. In FRESH mode a
countdown ticks once per second from `wait_seconds`; at zero the poll
cadence switches to `fast_poll_interval` (once), and at `-overtime_seconds`
the run is given up as TIMED_OUT. Every awaited call is followed by a
check of the run's scope token, so a response that lands after cancel()
or after another terminal outcome is dropped.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional

from app.analyzer.metrics_engine import rank_ads
from app.config import settings
from app.core.logging import get_logger
from app.ingestion.errors import RunNotFound
from app.models.ad_models import AdView
from app.models.scrape_models import ScrapeStatus
from app.orchestrator.backend import ScrapeBackend, ScrapeBackendError

logger = get_logger("orchestrator")

DELAYED_MESSAGE = "Data is delayed. Please refresh in a few minutes."


class OrchestratorState(str, Enum):
    IDLE = "IDLE"
    TRIGGERED = "TRIGGERED"
    POLLING = "POLLING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"


TERMINAL_STATES: FrozenSet[OrchestratorState] = frozenset(
    {
        OrchestratorState.COMPLETED,
        OrchestratorState.FAILED,
        OrchestratorState.TIMED_OUT,
        OrchestratorState.CANCELLED,
    }
)

ALLOWED_TRANSITIONS: Dict[OrchestratorState, FrozenSet[OrchestratorState]] = {
    OrchestratorState.IDLE: frozenset(
        {OrchestratorState.TRIGGERED, OrchestratorState.CANCELLED}
    ),
    OrchestratorState.TRIGGERED: frozenset(
        {OrchestratorState.POLLING, OrchestratorState.CANCELLED}
    ),
    OrchestratorState.POLLING: frozenset(
        {
            OrchestratorState.COMPLETED,
            OrchestratorState.FAILED,
            OrchestratorState.TIMED_OUT,
            OrchestratorState.CANCELLED,
        }
    ),
    OrchestratorState.COMPLETED: frozenset(),
    OrchestratorState.FAILED: frozenset(),
    OrchestratorState.TIMED_OUT: frozenset(),
    OrchestratorState.CANCELLED: frozenset(),
}


class ScrapeMode(str, Enum):
    FRESH = "FRESH"  # countdown + fast polling + timeout
    REFRESH = "REFRESH"  # plain polling, no countdown


class OrchestratorBusy(Exception):
    """This orchestrator already has a run in flight."""


class InvalidStateTransition(Exception):
    def __init__(self, current: OrchestratorState, requested: OrchestratorState):
        super().__init__(f"Cannot move from {current.value} to {requested.value}")


@dataclass
class RunHandle:
    run_id: str
    session_id: str
    mode: ScrapeMode


@dataclass
class ScrapeOutcome:
    state: OrchestratorState
    run_id: Optional[str] = None
    ads: List[AdView] = field(default_factory=list)
    message: Optional[str] = None


StateListener = Callable[[OrchestratorState, Optional[ScrapeOutcome]], None]


# ─────────────────────────────────────────────
# Countdown
# ─────────────────────────────────────────────


class CountdownTick(str, Enum):
    NONE = "NONE"
    SWITCH_TO_FAST = "SWITCH_TO_FAST"
    EXPIRED = "EXPIRED"


@dataclass
class CountdownPolicy:
    """Pure countdown: one tick() per elapsed second."""

    wait_seconds: int = 300
    overtime_seconds: int = 180
    remaining: int = field(init=False)
    switched: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        self.remaining = self.wait_seconds

    def tick(self) -> CountdownTick:
        self.remaining -= 1
        if self.remaining <= -self.overtime_seconds:
            return CountdownTick.EXPIRED
        if self.remaining <= 0 and not self.switched:
            self.switched = True
            return CountdownTick.SWITCH_TO_FAST
        return CountdownTick.NONE


class _RunStopped(Exception):
    """Raised inside the run's TaskGroup to tear down both timers."""


# ─────────────────────────────────────────────
# Orchestrator
# ─────────────────────────────────────────────


class ScrapeOrchestrator:
    """Drives one scrape run at a time against a ScrapeBackend."""

    def __init__(
        self,
        backend: ScrapeBackend,
        on_state: Optional[StateListener] = None,
        *,
        wait_seconds: Optional[int] = None,
        overtime_seconds: Optional[int] = None,
        poll_interval: Optional[float] = None,
        fast_poll_interval: Optional[float] = None,
        tick_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.backend = backend
        self.on_state = on_state
        self.wait_seconds = (
            wait_seconds if wait_seconds is not None else settings.scrape_wait_seconds
        )
        self.overtime_seconds = (
            overtime_seconds
            if overtime_seconds is not None
            else settings.scrape_overtime_seconds
        )
        self.poll_interval = poll_interval or settings.scrape_poll_interval_seconds
        self.fast_poll_interval = (
            fast_poll_interval or settings.scrape_fast_poll_interval_seconds
        )
        self.tick_seconds = tick_seconds
        self._sleep = sleep

        self.state = OrchestratorState.IDLE
        self.history: List[OrchestratorState] = [OrchestratorState.IDLE]
        self.remaining: Optional[int] = None
        self.handle: Optional[RunHandle] = None
        self._outcome: Optional[ScrapeOutcome] = None
        self._scope: Optional[object] = None
        self._busy = False
        self._task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None

    # ── State ──

    def _transition(self, new: OrchestratorState, notify: bool = True) -> None:
        if new not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidStateTransition(self.state, new)
        self.state = new
        self.history.append(new)
        logger.info(
            f"Scrape state → {new.value}",
            extra={"run_id": self.handle.run_id if self.handle else None},
        )
        if notify and self.on_state is not None:
            self.on_state(new, self._outcome if new in TERMINAL_STATES else None)

    def _finish(
        self,
        state: OrchestratorState,
        ads: Optional[List[AdView]] = None,
        message: Optional[str] = None,
    ) -> None:
        if self.state in TERMINAL_STATES:
            return
        self._scope = None
        self._outcome = ScrapeOutcome(
            state=state,
            run_id=self.handle.run_id if self.handle else None,
            ads=ads or [],
            message=message,
        )
        self._transition(state)

    def _reset(self) -> None:
        self.state = OrchestratorState.IDLE
        self.history = [OrchestratorState.IDLE]
        self.remaining = None
        self.handle = None
        self._outcome = None
        self._poll_task = None

    # ── Public API ──

    @property
    def busy(self) -> bool:
        return self._busy or (self._task is not None and not self._task.done())

    async def trigger(
        self, session_id: str, mode: ScrapeMode = ScrapeMode.FRESH
    ) -> RunHandle:
        """Start a run and begin polling in the background.

        Raises NoActiveTargets when the session has nothing to scrape and
        OrchestratorBusy when a run is already in flight.
        """
        if self.busy:
            raise OrchestratorBusy("A scrape is already in progress")
        self._busy = True
        try:
            self._reset()
            scope = object()
            self._scope = scope
            run_id = await self.backend.trigger(session_id)
            if self._scope is not scope:
                # cancel() landed while the trigger was in flight
                return RunHandle(run_id=run_id, session_id=session_id, mode=mode)

            self.handle = RunHandle(run_id=run_id, session_id=session_id, mode=mode)
            self._transition(OrchestratorState.TRIGGERED)
            self._task = asyncio.create_task(self._drive(self.handle, scope))
            return self.handle
        finally:
            self._busy = False

    async def wait(self) -> ScrapeOutcome:
        """Block until the current run reaches a terminal state."""
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                if self.state != OrchestratorState.CANCELLED:
                    raise
        if self._outcome is None:
            return ScrapeOutcome(
                state=self.state, run_id=self.handle.run_id if self.handle else None
            )
        return self._outcome

    def cancel(self) -> None:
        """Stop both timers. No listener is notified and late results are dropped."""
        if self.state in TERMINAL_STATES:
            return
        self._scope = None
        self._outcome = ScrapeOutcome(
            state=OrchestratorState.CANCELLED,
            run_id=self.handle.run_id if self.handle else None,
        )
        self._transition(OrchestratorState.CANCELLED, notify=False)
        if self._task is not None and not self._task.done():
            self._task.cancel()

    # ── Run ──

    async def _drive(self, handle: RunHandle, scope: object) -> Optional[ScrapeOutcome]:
        self._transition(OrchestratorState.POLLING)
        try:
            async with asyncio.TaskGroup() as tg:
                self._poll_task = tg.create_task(
                    self._poll_loop(handle, scope, self.poll_interval)
                )
                if handle.mode is ScrapeMode.FRESH:
                    tg.create_task(self._countdown(handle, scope, tg))
        except* _RunStopped:
            pass
        return self._outcome

    async def _poll_loop(
        self, handle: RunHandle, scope: object, interval: float
    ) -> None:
        while True:
            await self._check(handle, scope)
            await self._sleep(interval)
            if self._scope is not scope:
                raise _RunStopped()

    async def _check(self, handle: RunHandle, scope: object) -> None:
        try:
            result = await self.backend.check(handle.run_id, handle.session_id)
        except ScrapeBackendError as e:
            logger.warning(f"Status check failed, retrying: {e}", extra={"run_id": handle.run_id})
            if self._scope is not scope:
                raise _RunStopped()
            return
        except RunNotFound as e:
            if self._scope is scope:
                self._finish(OrchestratorState.FAILED, message=str(e))
            raise _RunStopped()
        except Exception as e:
            logger.error(
                f"Unexpected status check error, retrying: {e!r}",
                extra={"run_id": handle.run_id},
            )
            if self._scope is not scope:
                raise _RunStopped()
            return

        if self._scope is not scope:
            raise _RunStopped()

        if result.status == ScrapeStatus.COMPLETED:
            ads = rank_ads(result.ads or [], datetime.now(timezone.utc))
            self._finish(OrchestratorState.COMPLETED, ads=ads)
            raise _RunStopped()
        if result.status == ScrapeStatus.FAILED:
            self._finish(
                OrchestratorState.FAILED, message=result.message or "Scraping failed"
            )
            raise _RunStopped()

    async def _countdown(
        self, handle: RunHandle, scope: object, tg: asyncio.TaskGroup
    ) -> None:
        policy = CountdownPolicy(self.wait_seconds, self.overtime_seconds)
        self.remaining = policy.remaining
        while True:
            await self._sleep(self.tick_seconds)
            if self._scope is not scope:
                raise _RunStopped()
            tick = policy.tick()
            self.remaining = policy.remaining

            if tick is CountdownTick.SWITCH_TO_FAST:
                logger.info(
                    f"Wait elapsed, polling every {self.fast_poll_interval}s",
                    extra={"run_id": handle.run_id},
                )
                if self._poll_task is not None:
                    self._poll_task.cancel()
                self._poll_task = tg.create_task(
                    self._poll_loop(handle, scope, self.fast_poll_interval)
                )
            elif tick is CountdownTick.EXPIRED:
                logger.warning("Scrape timed out", extra={"run_id": handle.run_id})
                self._finish(OrchestratorState.TIMED_OUT, message=DELAYED_MESSAGE)
                raise _RunStopped()
