"""
Timeline Calculator

Turns an ordered roster of phases into absolute, operation-relative
instants:

    start[0]   = 0
    max[i]     = max(travel_duration) over phase i (0 if empty)
    arrival[i] = start[i] + max[i]
    start[i]   = arrival[i-1] + offset[i]          (i > 0)

Within a phase, leaders with shorter travel leave later so that everyone
in the phase arrives together:

    launch = start[i] + (max[i] - travel_duration)

All instants here are relative to phase 0's nominal start. The warmup
delay between "operation start" and phase 0 is added by the classifier,
not here, so a Timeline does not depend on countdown configuration.

The calculation is pure and cheap (one pass over the leaders) and is meant
to be recomputed on every tick rather than cached.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..interfaces.countdown_state import PhaseConfig


@dataclass
class LeaderTiming:
    """Absolute timing of one leader."""
    phase_key: str
    phase_index: int
    leader_id: str
    name: str
    travel_duration: float
    launch_delay: float      # max[i] - travel_duration
    launch: float            # start[i] + launch_delay
    arrival: float           # == arrival[i]

    def to_dict(self) -> dict:
        return {
            'phase_key': self.phase_key,
            'phase_index': self.phase_index,
            'leader_id': self.leader_id,
            'name': self.name,
            'travel_duration': self.travel_duration,
            'launch_delay': self.launch_delay,
            'launch': self.launch,
            'arrival': self.arrival,
        }


@dataclass
class PhaseTiming:
    """Start, longest travel and arrival of one phase."""
    key: str
    title: str
    index: int
    offset: float
    start: float
    max_travel: float
    arrival: float
    leaders: List[LeaderTiming] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'key': self.key,
            'title': self.title,
            'index': self.index,
            'offset': self.offset,
            'start': self.start,
            'max_travel': self.max_travel,
            'arrival': self.arrival,
            'leaders': [leader.to_dict() for leader in self.leaders],
        }


@dataclass
class Timeline:
    """Derived, never persisted."""
    phases: List[PhaseTiming] = field(default_factory=list)

    @property
    def total_duration(self) -> float:
        """
        Latest phase arrival.

        With non-negative offsets this is the last phase's arrival; with
        negative offsets an earlier phase may land last, and the operation is
        not over until it does.
        """
        if not self.phases:
            return 0.0
        return max(phase.arrival for phase in self.phases)

    @property
    def phase_starts(self) -> np.ndarray:
        return np.array([phase.start for phase in self.phases], dtype=float)

    @property
    def phase_arrivals(self) -> np.ndarray:
        return np.array([phase.arrival for phase in self.phases], dtype=float)

    def leaders(self) -> List[LeaderTiming]:
        """All leaders in phase order."""
        return [leader for phase in self.phases for leader in phase.leaders]

    def leader_arrays(self) -> Tuple[np.ndarray, np.ndarray]:
        """(launches, arrivals) for all leaders, aligned with leaders()."""
        leaders = self.leaders()
        launches = np.array([leader.launch for leader in leaders], dtype=float)
        arrivals = np.array([leader.arrival for leader in leaders], dtype=float)
        return launches, arrivals

    def get_phase(self, key: str) -> Optional[PhaseTiming]:
        for phase in self.phases:
            if phase.key == key:
                return phase
        return None

    def find_leader(self, phase_key: str, leader_id: str) -> Optional[LeaderTiming]:
        """Timing of a leader, or None when the phase or id is unknown."""
        phase = self.get_phase(phase_key)
        if phase is None:
            return None
        for leader in phase.leaders:
            if leader.leader_id == leader_id:
                return leader
        return None

    def to_dict(self) -> dict:
        return {
            'total_duration': self.total_duration,
            'phases': [phase.to_dict() for phase in self.phases],
        }


def phase_max_travel(phase: PhaseConfig) -> float:
    """Longest travel duration in a phase, 0 for an empty phase."""
    return max((leader.travel_duration for leader in phase.leaders), default=0.0)


def compute_timeline(phases: Sequence[PhaseConfig]) -> Timeline:
    """
    Compute absolute phase and leader instants for an ordered phase list.

    Never raises for empty phases or zero/negative offsets; those simply
    yield a zero-length phase or a phase that starts before its
    predecessor's arrival.

    Args:
        phases: Ordered phases, first phase's offset ignored

    Returns:
        Timeline with one PhaseTiming per input phase
    """
    timeline = Timeline()
    previous_arrival = 0.0

    for index, phase in enumerate(phases):
        max_travel = float(phase_max_travel(phase))
        offset = float(phase.offset) if index > 0 else 0.0
        start = previous_arrival + offset if index > 0 else 0.0
        arrival = start + max_travel

        phase_timing = PhaseTiming(
            key=phase.key,
            title=phase.title or phase.key,
            index=index,
            offset=offset,
            start=start,
            max_travel=max_travel,
            arrival=arrival,
        )

        for leader in phase.leaders:
            launch_delay = max_travel - leader.travel_duration
            phase_timing.leaders.append(LeaderTiming(
                phase_key=phase.key,
                phase_index=index,
                leader_id=leader.id,
                name=leader.name,
                travel_duration=float(leader.travel_duration),
                launch_delay=launch_delay,
                launch=start + launch_delay,
                arrival=arrival,
            ))

        timeline.phases.append(phase_timing)
        previous_arrival = arrival

    return timeline


def timeline_summary(timeline: Timeline) -> Dict[str, float]:
    """Flat phase-key -> arrival map, handy for log lines."""
    return {phase.key: phase.arrival for phase in timeline.phases}
