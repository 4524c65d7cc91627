"""
Viewer Tick Loop - per-viewer fixed-cadence status derivation.

Each viewer keeps a local copy of the broadcast CountdownState and roster.
While the local state is COUNTING the loop wakes every tick_interval,
computes elapsed = now - start_instant against the viewer's own clock,
recomputes the timeline and hands a ViewerSnapshot to the render callback.

While not COUNTING the loop thread is parked on a condition variable until
a COUNTING state arrives (or stop() is called); it does not spin.

Usage:
    loop = ViewerTickLoop(warmup=10.0, on_tick=render)
    loop.start()
    loop.apply_roster(roster)          # from 'roster' broadcasts
    loop.apply_state(countdown_state)  # from 'timer' broadcasts
    ...
    loop.stop()
"""

import logging
import math
import threading
import time
from typing import Callable, Optional

from ..interfaces.countdown_state import CountdownState, CountdownStatus, RosterConfig
from ..timing.board import LeaderStatus, ViewerSnapshot, build_snapshot
from ..timing.classifier import DEFAULT_WARMUP_SECONDS
from ..timing.timeline import compute_timeline

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL = 0.1


class ViewerTickLoop:
    """
    Local tick loop of one viewer.

    Args:
        warmup: Warmup seconds (must match the coordinator's)
        tick_interval: Seconds between ticks while counting
        on_tick: Called with every ViewerSnapshot
        clock: Local time source (epoch seconds)
    """

    def __init__(
        self,
        warmup: float = DEFAULT_WARMUP_SECONDS,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        on_tick: Optional[Callable[[ViewerSnapshot], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.warmup = float(warmup)
        self.tick_interval = float(tick_interval)
        self.on_tick = on_tick
        self.clock = clock

        self._state = CountdownState()
        self._roster = RosterConfig()
        self._cond = threading.Condition()
        self._running = False
        self.thread: Optional[threading.Thread] = None

        self.tick_count = 0
        self.last_snapshot: Optional[ViewerSnapshot] = None

    # =========================================================================
    # Broadcast inputs
    # =========================================================================

    @property
    def state(self) -> CountdownState:
        with self._cond:
            return self._state

    @property
    def roster(self) -> RosterConfig:
        with self._cond:
            return self._roster

    @property
    def counting(self) -> bool:
        state = self.state
        return state.status == CountdownStatus.COUNTING and state.start_instant is not None

    def apply_state(self, state: CountdownState):
        """Adopt a broadcast CountdownState and wake the loop."""
        with self._cond:
            self._state = state
            self._cond.notify_all()
        logger.debug(f"Viewer state -> {state.status.value}")
        # Leaving COUNTING resets the display immediately
        if state.status != CountdownStatus.COUNTING:
            self._emit(self.snapshot())

    def apply_warmup(self, warmup: float):
        """Adopt the coordinator's warmup, overriding the local default."""
        warmup = float(warmup)
        if not math.isfinite(warmup) or warmup < 0:
            raise ValueError(f"Invalid warmup {warmup}")
        with self._cond:
            self.warmup = warmup

    def apply_roster(self, roster: RosterConfig):
        with self._cond:
            self._roster = roster
        if not self.counting:
            self._emit(self.snapshot())

    # =========================================================================
    # Derivation
    # =========================================================================

    def elapsed(self, now: Optional[float] = None) -> float:
        """Seconds since start_instant on the local clock, 0 when not counting."""
        state = self.state
        if state.status != CountdownStatus.COUNTING or state.start_instant is None:
            return 0.0
        now = self.clock() if now is None else now
        return now - state.start_instant

    def snapshot(self, now: Optional[float] = None) -> ViewerSnapshot:
        """Derive the board for the given instant (default: local clock)."""
        with self._cond:
            state = self._state
            roster = self._roster
            warmup = self.warmup
        timeline = compute_timeline(roster.phases)
        return build_snapshot(timeline, state, self.elapsed(now), warmup)

    def leader_view(self, phase_key: str, leader_id: str,
                    now: Optional[float] = None) -> Optional[LeaderStatus]:
        """One leader's row, or None when the leader is not found."""
        return self.snapshot(now).leader(phase_key, leader_id)

    def tick(self, now: Optional[float] = None) -> ViewerSnapshot:
        """Run one tick synchronously."""
        snap = self.snapshot(now)
        self.tick_count += 1
        self._emit(snap)
        return snap

    def _emit(self, snap: ViewerSnapshot):
        self.last_snapshot = snap
        if self.on_tick:
            try:
                self.on_tick(snap)
            except Exception as e:
                logger.exception(f"Render callback failed: {e}")

    # =========================================================================
    # Thread lifecycle
    # =========================================================================

    def start(self):
        """Start the tick thread."""
        if self._running:
            logger.warning("Tick loop already running")
            return
        self._running = True
        self.thread = threading.Thread(
            target=self._run,
            name="ViewerTickLoop",
            daemon=True
        )
        self.thread.start()

    def _run(self):
        logger.debug("Tick loop thread started")
        while True:
            with self._cond:
                # Suspended until a COUNTING state arrives
                while self._running and not (
                    self._state.status == CountdownStatus.COUNTING
                    and self._state.start_instant is not None
                ):
                    self._cond.wait()
                if not self._running:
                    break

            self.tick()

            with self._cond:
                if not self._running:
                    break
                self._cond.wait(timeout=self.tick_interval)
        logger.debug("Tick loop thread stopped")

    def stop(self):
        """Stop and join the tick thread."""
        with self._cond:
            self._running = False
            self._cond.notify_all()
        if self.thread:
            self.thread.join(timeout=2.0)
            self.thread = None

    @property
    def running(self) -> bool:
        return self._running
