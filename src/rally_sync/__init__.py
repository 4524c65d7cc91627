"""
rally-sync: Phased Timing Synchronization Engine

Coordinates leaders across sequential phases so that every leader in a
phase lands on the target together and each phase lands at its configured
offset from the previous one.

Architecture:
    Roster Store -> Timeline Calculator -> Status Classifier -> display
    Countdown Coordinator -> SSE broadcast -> every Viewer Tick Loop

The coordinator holds the single authoritative start instant. Viewers never
ask it for statuses: each one derives every leader's status locally, on its
own clock, from the broadcast state and roster.
"""

__version__ = "1.0.0"

from .interfaces.countdown_state import (
    CountdownStatus,
    CountdownState,
    Leader,
    PhaseConfig,
    RosterConfig,
)
from .timing.timeline import compute_timeline, Timeline
from .timing.classifier import classify, StatusLabel, format_countdown

__all__ = [
    "CountdownStatus",
    "CountdownState",
    "Leader",
    "PhaseConfig",
    "RosterConfig",
    "compute_timeline",
    "Timeline",
    "classify",
    "StatusLabel",
    "format_countdown",
    "__version__",
]
