"""Countdown engine - coordinator state machine and broadcast channel.

Contains:
- CountdownCoordinator: owner of the shared CountdownState
- Broadcaster: fire-and-forget fan-out to connected viewers
"""

from .broadcast import Broadcaster, BroadcastEvent, Subscription
from .coordinator import CountdownCoordinator, ConnectSnapshot, EVENT_TIMER, EVENT_ROSTER

__all__ = [
    'Broadcaster',
    'BroadcastEvent',
    'Subscription',
    'CountdownCoordinator',
    'ConnectSnapshot',
    'EVENT_TIMER',
    'EVENT_ROSTER',
]
