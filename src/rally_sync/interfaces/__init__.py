"""Data contracts shared by the coordinator, the roster store and viewers."""

from .countdown_state import (
    CountdownStatus,
    CountdownState,
    Leader,
    PhaseConfig,
    RosterConfig,
    RosterValidationError,
)

__all__ = [
    'CountdownStatus',
    'CountdownState',
    'Leader',
    'PhaseConfig',
    'RosterConfig',
    'RosterValidationError',
]
