"""
Countdown Coordinator - sole owner of the shared CountdownState.

Responsibilities:
    - start / cancel commands from any connected viewer
    - broadcast of every state change before the command returns
    - immediate resynchronisation of newly connected viewers
    - supervisory COUNTING -> FINISHED transition, independent of viewers

Start policy:
    A start received while already COUNTING is rejected (start() returns
    False). The operation keeps its original start instant; the duplicate is
    logged and counted, never raised.

The state is written and published under one lock, so concurrent commands
resolve last-writer-wins and every viewer sees transitions in the same
order.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from ..interfaces.countdown_state import CountdownState, CountdownStatus, RosterConfig
from ..timing.classifier import DEFAULT_WARMUP_SECONDS
from ..timing.timeline import Timeline, compute_timeline, timeline_summary
from .broadcast import Broadcaster, Subscription

logger = logging.getLogger(__name__)

# Seconds past the last arrival before the supervisor declares FINISHED
FINISH_GRACE_SECONDS = 1.0

EVENT_TIMER = 'timer'
EVENT_ROSTER = 'roster'


@dataclass
class ConnectSnapshot:
    """What a viewer receives on connection."""
    subscription: Subscription
    state: CountdownState
    roster: RosterConfig
    timeline: Timeline


class CountdownCoordinator:
    """
    Owns the CountdownState and the broadcast protocol.

    Args:
        store: Roster Store (get_configuration / on_configuration_changed /
            load_countdown / save_countdown)
        broadcaster: Broadcast channel to viewers
        warmup: Warmup seconds between start and phase 0
        clock: Time source (epoch seconds)
    """

    def __init__(
        self,
        store,
        broadcaster: Optional[Broadcaster] = None,
        warmup: float = DEFAULT_WARMUP_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.broadcaster = broadcaster or Broadcaster()
        self.warmup = float(warmup)
        self.clock = clock

        self._lock = threading.RLock()
        self._state = CountdownState()

        self.stats: Dict[str, Any] = {
            'start_time': clock(),
            'commands_accepted': 0,
            'commands_rejected': 0,
            'broadcasts': 0,
            'supervisor_checks': 0,
            'operations_finished': 0,
        }

        # A crashed countdown must never auto-resume
        stored = store.load_countdown()
        if stored.status != CountdownStatus.IDLE:
            logger.warning(
                f"Discarding stale countdown record ({stored.status.value}, "
                f"start={stored.start_instant}), resetting to idle"
            )
        store.save_countdown(self._state)

        store.on_configuration_changed(self.on_configuration_changed)

    # =========================================================================
    # Read side
    # =========================================================================

    def get_state(self) -> CountdownState:
        """Current state (immutable value)."""
        with self._lock:
            return self._state

    def current_timeline(self) -> Timeline:
        return compute_timeline(self.store.get_configuration().phases)

    def elapsed(self, now: Optional[float] = None) -> float:
        """Seconds since the start instant, 0 when not counting."""
        state = self.get_state()
        if state.status != CountdownStatus.COUNTING or state.start_instant is None:
            return 0.0
        now = self.clock() if now is None else now
        return now - state.start_instant

    def connect(self) -> ConnectSnapshot:
        """
        Register a viewer and hand it the current state.

        Subscribing and reading the state happen under the state lock, so no
        transition can fall between the snapshot and the first queued event.
        The roster is read after subscribing: an edit landing in between is
        either in the snapshot or queued, never lost.
        """
        with self._lock:
            subscription = self.broadcaster.subscribe()
            state = self._state
            roster = self.store.get_configuration()
        return ConnectSnapshot(
            subscription=subscription,
            state=state,
            roster=roster,
            timeline=compute_timeline(roster.phases),
        )

    def disconnect(self, subscription: Subscription):
        self.broadcaster.unsubscribe(subscription)

    # =========================================================================
    # Commands
    # =========================================================================

    def _transition(self, new_state: CountdownState):
        """Replace, persist and broadcast. Caller holds the lock."""
        self._state = new_state
        try:
            self.store.save_countdown(new_state)
        except OSError as e:
            logger.error(f"Failed to persist countdown record: {e}")
        self.broadcaster.publish(EVENT_TIMER, new_state.to_dict())
        self.stats['broadcasts'] += 1

    def start(self, now: Optional[float] = None) -> bool:
        """
        Begin counting from the given start instant.

        Args:
            now: Proposed start instant (epoch seconds), default clock()

        Returns:
            True if accepted, False if a countdown is already running

        Raises:
            ValueError: start instant is not a finite number
        """
        start_instant = self.clock() if now is None else float(now)
        if not math.isfinite(start_instant):
            raise ValueError(f"Start instant must be finite, got {start_instant}")
        with self._lock:
            if self._state.status == CountdownStatus.COUNTING:
                self.stats['commands_rejected'] += 1
                logger.warning(
                    f"Start rejected: already counting since {self._state.start_instant}"
                )
                return False
            self._transition(CountdownState(CountdownStatus.COUNTING, start_instant))
            self.stats['commands_accepted'] += 1

        logger.info(f"Countdown started at {start_instant:.3f}")
        return True

    def cancel(self) -> CountdownState:
        """Return to IDLE. Idempotent; always re-broadcasts."""
        with self._lock:
            self._transition(CountdownState())
            self.stats['commands_accepted'] += 1
            state = self._state
        logger.info("Countdown cancelled")
        return state

    # =========================================================================
    # Supervisor
    # =========================================================================

    def supervise(self, now: Optional[float] = None) -> CountdownState:
        """
        Declare the operation over once every phase has landed.

        COUNTING -> FINISHED when elapsed > total_duration + warmup + grace.
        The timeline is recomputed from the roster on every check.
        """
        now = self.clock() if now is None else now
        timeline = self.current_timeline()
        deadline = timeline.total_duration + self.warmup + FINISH_GRACE_SECONDS

        with self._lock:
            self.stats['supervisor_checks'] += 1
            state = self._state
            if state.status != CountdownStatus.COUNTING or state.start_instant is None:
                return state

            elapsed = now - state.start_instant
            if elapsed > deadline:
                self._transition(CountdownState(CountdownStatus.FINISHED, state.start_instant))
                self.stats['operations_finished'] += 1
                logger.info(
                    f"Operation finished: elapsed {elapsed:.1f}s > {deadline:.1f}s"
                )
            return self._state

    # =========================================================================
    # Roster notifications
    # =========================================================================

    def roster_payload(self, roster: RosterConfig,
                       timeline: Optional[Timeline] = None) -> Dict[str, Any]:
        """Body of a 'roster' event. Carries warmup so viewers never guess it."""
        if timeline is None:
            timeline = compute_timeline(roster.phases)
        return {
            'roster': roster.to_dict(),
            'timeline': timeline.to_dict(),
            'warmup': self.warmup,
        }

    def on_configuration_changed(self, roster: RosterConfig):
        """Push the edited roster and its timeline to every viewer."""
        timeline = compute_timeline(roster.phases)
        with self._lock:
            self.broadcaster.publish(EVENT_ROSTER, self.roster_payload(roster, timeline))
            self.stats['broadcasts'] += 1
        logger.info(f"Roster broadcast, phase arrivals {timeline_summary(timeline)}")

    def get_status(self) -> Dict[str, Any]:
        """Status dictionary for /status and /metrics."""
        state = self.get_state()
        now = self.clock()
        timeline = self.current_timeline()
        return {
            'timestamp': now,
            'state': state.status.value,
            'start_instant': state.start_instant,
            'elapsed_seconds': self.elapsed(now),
            'warmup_seconds': self.warmup,
            'total_duration_seconds': timeline.total_duration,
            'phases': len(timeline.phases),
            'leaders': len(timeline.leaders()),
            'viewers_connected': self.broadcaster.subscriber_count,
            'commands_accepted': self.stats['commands_accepted'],
            'commands_rejected': self.stats['commands_rejected'],
            'broadcasts': self.stats['broadcasts'],
            'supervisor_checks': self.stats['supervisor_checks'],
            'operations_finished': self.stats['operations_finished'],
            'uptime_seconds': now - self.stats['start_time'],
        }
