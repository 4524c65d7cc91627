"""
Viewer side of the countdown protocol.

- ViewerTickLoop: local fixed-cadence status derivation
- EventStreamClient: SSE consumer feeding a tick loop
- render_board / TerminalRenderer: text display
"""

from .tick_loop import ViewerTickLoop
from .client import EventStreamClient, parse_event_stream, send_start, send_cancel
from .render import render_board, TerminalRenderer

__all__ = [
    'ViewerTickLoop',
    'EventStreamClient',
    'parse_event_stream',
    'send_start',
    'send_cancel',
    'render_board',
    'TerminalRenderer',
]
