"""
Status board: the per-tick view every viewer derives locally.

Combines a Timeline, the local CountdownState and the elapsed time into
one ViewerSnapshot (per-leader labels, display readouts, mission progress
and warmup readout). The server builds the same snapshot for its JSON API
so that HTTP clients and SSE viewers agree.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional

from ..interfaces.countdown_state import CountdownState, CountdownStatus
from .classifier import (
    LABEL_ORDER,
    StatusLabel,
    classify_many,
    display_values,
    format_countdown,
)
from .timeline import LeaderTiming, Timeline

HEADLINE_IDLE = "READY TO COORDINATE"
HEADLINE_WARMUP = "SYSTEM WARMUP IN PROGRESS"
HEADLINE_LIVE = "OPERATION LIVE"
HEADLINE_COMPLETE = "OPERATION COMPLETE"


@dataclass
class LeaderStatus:
    """One leader's row on the board."""
    phase_key: str
    leader_id: str
    name: str
    label: StatusLabel
    time_to_launch: float
    time_to_arrival: float
    launch_display: str
    arrival_display: str

    def to_dict(self) -> dict:
        return {
            'phase_key': self.phase_key,
            'leader_id': self.leader_id,
            'name': self.name,
            'label': self.label.value,
            'time_to_launch': self.time_to_launch,
            'time_to_arrival': self.time_to_arrival,
            'launch_display': self.launch_display,
            'arrival_display': self.arrival_display,
        }


@dataclass
class ViewerSnapshot:
    """Everything a viewer renders for one tick."""
    status: CountdownStatus
    elapsed: float
    warmup: float
    total_duration: float
    progress_pct: float
    warmup_remaining: Optional[int]
    headline: str
    leaders: List[LeaderStatus] = field(default_factory=list)

    def leader(self, phase_key: str, leader_id: str) -> Optional[LeaderStatus]:
        """Row for one leader, or None when it is not on the roster."""
        for row in self.leaders:
            if row.phase_key == phase_key and row.leader_id == leader_id:
                return row
        return None

    def phase_rows(self, phase_key: str) -> List[LeaderStatus]:
        return [row for row in self.leaders if row.phase_key == phase_key]

    def to_dict(self) -> dict:
        return {
            'status': self.status.value,
            'elapsed': self.elapsed,
            'warmup': self.warmup,
            'total_duration': self.total_duration,
            'progress_pct': self.progress_pct,
            'warmup_remaining': self.warmup_remaining,
            'headline': self.headline,
            'leaders': [row.to_dict() for row in self.leaders],
        }


def headline_for(status: CountdownStatus, elapsed: float, warmup: float) -> str:
    if status == CountdownStatus.IDLE:
        return HEADLINE_IDLE
    if status == CountdownStatus.FINISHED:
        return HEADLINE_COMPLETE
    if elapsed < warmup:
        return HEADLINE_WARMUP
    return HEADLINE_LIVE


def progress_pct(elapsed: float, total_duration: float, warmup: float) -> float:
    """Share of the whole operation (warmup included) that has elapsed, 0-100."""
    span = total_duration + warmup
    if span <= 0:
        return 100.0 if elapsed > 0 else 0.0
    return max(0.0, min(100.0, elapsed / span * 100.0))


def build_snapshot(
    timeline: Timeline,
    state: CountdownState,
    elapsed: float,
    warmup: float,
) -> ViewerSnapshot:
    """
    Derive every leader's status for one tick.

    Args:
        timeline: Timeline computed from the current roster
        state: Local copy of the broadcast CountdownState
        elapsed: Seconds since state.start_instant (0 when not counting)
        warmup: Warmup seconds

    Returns:
        ViewerSnapshot
    """
    leaders: List[LeaderTiming] = timeline.leaders()
    launches, arrivals = timeline.leader_arrays()
    indices, to_launch, to_arrival = classify_many(
        state.status, elapsed, launches, arrivals, warmup
    )

    rows = []
    for i, timing in enumerate(leaders):
        label = LABEL_ORDER[int(indices[i])]
        launch_shown, arrival_shown = display_values(
            label,
            float(to_launch[i]),
            float(to_arrival[i]),
            planned_launch=warmup + timing.launch,
            travel_duration=timing.travel_duration,
        )
        rows.append(LeaderStatus(
            phase_key=timing.phase_key,
            leader_id=timing.leader_id,
            name=timing.name,
            label=label,
            time_to_launch=float(to_launch[i]),
            time_to_arrival=float(to_arrival[i]),
            launch_display=format_countdown(launch_shown),
            arrival_display=format_countdown(arrival_shown),
        ))

    counting = state.status == CountdownStatus.COUNTING
    warmup_remaining = None
    if counting and elapsed < warmup:
        warmup_remaining = int(math.ceil(warmup - elapsed))

    total = timeline.total_duration
    return ViewerSnapshot(
        status=state.status,
        elapsed=elapsed,
        warmup=warmup,
        total_duration=total,
        progress_pct=progress_pct(elapsed, total, warmup) if counting else 0.0,
        warmup_remaining=warmup_remaining,
        headline=headline_for(state.status, elapsed, warmup),
        leaders=rows,
    )
