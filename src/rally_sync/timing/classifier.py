"""
Status Classifier

Maps a leader's signed countdown magnitudes onto a display label.
Classification is ordered, first match wins:

    status == IDLE            -> STANDBY
    time_to_launch  > 10      -> WAITING
    time_to_launch  > 0       -> GET READY
    time_to_launch  > -2      -> LAUNCH NOW
    time_to_arrival > 0       -> IN TRANSIT
    otherwise                 -> HIT TARGET

All inequalities are strict. LAUNCH NOW stays up for 2 seconds after the
ideal instant to absorb display and network jitter. Magnitudes are compared
signed; clamping to "00:00" is a display concern only (format_countdown).
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from ..interfaces.countdown_state import CountdownStatus

# Band thresholds in seconds
WAITING_THRESHOLD = 10.0
GET_READY_THRESHOLD = 0.0
LAUNCH_NOW_TOLERANCE = -2.0

DEFAULT_WARMUP_SECONDS = 10.0


class StatusLabel(str, Enum):
    """Display state of one leader."""
    STANDBY = "STANDBY"
    WAITING = "WAITING"
    GET_READY = "GET READY"
    LAUNCH_NOW = "LAUNCH NOW"
    IN_TRANSIT = "IN TRANSIT"
    HIT_TARGET = "HIT TARGET"


# Order used by classify_many(); index into this tuple
LABEL_ORDER = (
    StatusLabel.STANDBY,
    StatusLabel.WAITING,
    StatusLabel.GET_READY,
    StatusLabel.LAUNCH_NOW,
    StatusLabel.IN_TRANSIT,
    StatusLabel.HIT_TARGET,
)


@dataclass(frozen=True)
class Classification:
    """Label plus the two signed countdown magnitudes."""
    label: StatusLabel
    time_to_launch: float
    time_to_arrival: float


def label_for(status: CountdownStatus, time_to_launch: float, time_to_arrival: float) -> StatusLabel:
    """Apply the band table to already-computed magnitudes."""
    if status == CountdownStatus.IDLE:
        return StatusLabel.STANDBY
    if time_to_launch > WAITING_THRESHOLD:
        return StatusLabel.WAITING
    if time_to_launch > GET_READY_THRESHOLD:
        return StatusLabel.GET_READY
    if time_to_launch > LAUNCH_NOW_TOLERANCE:
        return StatusLabel.LAUNCH_NOW
    if time_to_arrival > 0:
        return StatusLabel.IN_TRANSIT
    return StatusLabel.HIT_TARGET


def classify(
    status: CountdownStatus,
    elapsed: float,
    leader_launch: float,
    leader_arrival: float,
    warmup: float = DEFAULT_WARMUP_SECONDS,
) -> Classification:
    """
    Classify one leader.

    Args:
        status: Current countdown status
        elapsed: Seconds since the countdown start instant
        leader_launch: Timeline-relative launch instant
        leader_arrival: Timeline-relative arrival instant (phase arrival)
        warmup: Grace delay between operation start and phase 0 start

    Returns:
        Classification with signed, unclamped magnitudes
    """
    time_to_launch = warmup + leader_launch - elapsed
    time_to_arrival = warmup + leader_arrival - elapsed
    return Classification(
        label=label_for(status, time_to_launch, time_to_arrival),
        time_to_launch=time_to_launch,
        time_to_arrival=time_to_arrival,
    )


def classify_many(
    status: CountdownStatus,
    elapsed: float,
    launches: np.ndarray,
    arrivals: np.ndarray,
    warmup: float = DEFAULT_WARMUP_SECONDS,
):
    """
    Vectorised classify() for every leader of a tick.

    Returns:
        (label_indices, time_to_launch, time_to_arrival) where label_indices
        index into LABEL_ORDER
    """
    launches = np.asarray(launches, dtype=float)
    arrivals = np.asarray(arrivals, dtype=float)
    time_to_launch = warmup + launches - elapsed
    time_to_arrival = warmup + arrivals - elapsed

    if status == CountdownStatus.IDLE:
        indices = np.zeros(launches.shape, dtype=int)
    else:
        indices = np.select(
            [
                time_to_launch > WAITING_THRESHOLD,
                time_to_launch > GET_READY_THRESHOLD,
                time_to_launch > LAUNCH_NOW_TOLERANCE,
                time_to_arrival > 0,
            ],
            [1, 2, 3, 4],
            default=5,
        )

    return indices, time_to_launch, time_to_arrival


def format_countdown(seconds: Optional[float]) -> str:
    """
    Render seconds as M:SS.

    Minutes are unpadded, seconds zero-padded to two digits. Any value
    <= 0 (or None) renders as "00:00".
    """
    if seconds is None or seconds <= 0:
        return "00:00"
    minutes = int(math.floor(seconds / 60))
    secs = int(math.floor(seconds % 60))
    return f"{minutes}:{secs:02d}"


def display_values(
    label: StatusLabel,
    time_to_launch: float,
    time_to_arrival: float,
    planned_launch: float,
    travel_duration: float,
):
    """
    The (launch, arrival) seconds shown on screen for a label.

    STANDBY shows the plan (countdown-relative launch instant and travel
    duration); LAUNCH NOW and IN TRANSIT pin the launch readout at 0;
    HIT TARGET shows 0 for both.
    """
    if label == StatusLabel.STANDBY:
        return planned_launch, travel_duration
    if label in (StatusLabel.WAITING, StatusLabel.GET_READY):
        return time_to_launch, time_to_arrival
    if label in (StatusLabel.LAUNCH_NOW, StatusLabel.IN_TRANSIT):
        return 0.0, time_to_arrival
    return 0.0, 0.0
