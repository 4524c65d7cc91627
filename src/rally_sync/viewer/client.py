"""
Event stream client - connects a ViewerTickLoop to the coordinator's SSE
channel.

The server sends the current roster and countdown state as soon as the
stream opens, then every change as it happens. On disconnect the client
reconnects with backoff and is fully resynchronised by that first burst;
nothing is replayed.

Also provides the two outbound commands (start, cancel) as plain JSON POSTs.
"""

import json
import logging
import threading
import time
import urllib.error
import urllib.request
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple

from ..interfaces.countdown_state import CountdownState, RosterConfig
from .tick_loop import ViewerTickLoop

logger = logging.getLogger(__name__)


def parse_event_stream(lines: Iterable[bytes]) -> Iterator[Tuple[str, Dict[str, Any]]]:
    """
    Parse Server-Sent Events into (event, payload) pairs.

    Comment lines (heartbeats) are skipped; events without a name are
    reported as 'message'. Payloads that are not valid JSON are logged
    and skipped.
    """
    event = 'message'
    data_lines = []
    for raw in lines:
        line = raw.decode('utf-8', errors='replace').rstrip('\r\n')
        if not line:
            if data_lines:
                data = '\n'.join(data_lines)
                try:
                    yield event, json.loads(data)
                except json.JSONDecodeError as e:
                    logger.warning(f"Skipping malformed {event} event: {e}")
            event = 'message'
            data_lines = []
            continue
        if line.startswith(':'):
            continue
        field_name, _, value = line.partition(':')
        value = value[1:] if value.startswith(' ') else value
        if field_name == 'event':
            event = value
        elif field_name == 'data':
            data_lines.append(value)


def post_json(url: str, payload: Optional[Dict[str, Any]] = None,
              timeout: float = 5.0) -> Tuple[int, Dict[str, Any]]:
    """POST a JSON body, return (status, decoded JSON reply)."""
    body = json.dumps(payload or {}).encode()
    request = urllib.request.Request(
        url,
        data=body,
        headers={'Content-Type': 'application/json'},
        method='POST'
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            return response.status, json.loads(response.read() or b'{}')
    except urllib.error.HTTPError as e:
        return e.code, json.loads(e.read() or b'{}')


def send_start(server_url: str, start_instant: Optional[float] = None):
    """Issue the start command with our local clock as the proposed instant."""
    instant = time.time() if start_instant is None else start_instant
    return post_json(f"{server_url.rstrip('/')}/api/timer/start", {'start_instant': instant})


def send_cancel(server_url: str):
    return post_json(f"{server_url.rstrip('/')}/api/timer/cancel")


class EventStreamClient:
    """
    Feeds broadcasts from the server's /events stream into a tick loop.

    Args:
        server_url: Base URL of the coordinator, e.g. http://127.0.0.1:3001
        loop: ViewerTickLoop to drive
        reconnect_delay: Initial reconnect backoff in seconds
        max_reconnect_delay: Backoff ceiling
    """

    def __init__(
        self,
        server_url: str,
        loop: ViewerTickLoop,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 15.0,
    ):
        self.server_url = server_url.rstrip('/')
        self.loop = loop
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay

        self._running = False
        self._stop_event = threading.Event()
        self._response = None
        self.thread: Optional[threading.Thread] = None
        self.stats = {'connections': 0, 'events': 0}

    def dispatch(self, event: str, payload: Dict[str, Any]):
        """Apply one broadcast to the tick loop."""
        self.stats['events'] += 1
        if not isinstance(payload, dict):
            raise ValueError(f"Expected a JSON object, got {payload!r}")
        if event == 'timer':
            self.loop.apply_state(CountdownState.from_dict(payload))
        elif event == 'roster':
            roster = RosterConfig.from_dict(payload.get('roster', {}))
            if payload.get('warmup') is not None:
                self.loop.apply_warmup(payload['warmup'])
            self.loop.apply_roster(roster)
        else:
            logger.debug(f"Ignoring event {event}")

    def consume(self, lines: Iterable[bytes]):
        """Dispatch every event of one stream until it ends."""
        for event, payload in parse_event_stream(lines):
            if self._stop_event.is_set():
                break
            try:
                self.dispatch(event, payload)
            except (TypeError, ValueError) as e:
                logger.warning(f"Ignoring invalid {event} payload: {e}")

    def start(self):
        if self._running:
            logger.warning("Event stream client already running")
            return
        self._running = True
        self._stop_event.clear()
        self.thread = threading.Thread(
            target=self._run,
            name="EventStreamClient",
            daemon=True
        )
        self.thread.start()

    def _run(self):
        delay = self.reconnect_delay
        while self._running:
            try:
                with urllib.request.urlopen(f"{self.server_url}/events", timeout=30) as response:
                    self._response = response
                    self.stats['connections'] += 1
                    logger.info(f"Connected to {self.server_url}/events")
                    delay = self.reconnect_delay
                    self.consume(response)
            except OSError as e:
                if self._running:
                    logger.warning(f"Event stream lost ({e}), reconnecting in {delay:.0f}s")
            finally:
                self._response = None

            if self._stop_event.wait(delay):
                break
            delay = min(delay * 2, self.max_reconnect_delay)

    def stop(self):
        self._running = False
        self._stop_event.set()
        response = self._response
        if response is not None:
            try:
                response.close()
            except OSError:
                pass
        if self.thread:
            self.thread.join(timeout=2.0)
            self.thread = None
