"""
Web Server for rally-sync.

Provides HTTP endpoints for:
- Health, status and Prometheus metrics
- JSON API for roster, timeline and per-leader views
- The two inbound commands (start, cancel)
- Server-Sent Events broadcast channel for viewers

Usage:
    from rally_sync.web import WebServer

    server = WebServer(port=3001)
    server.set_coordinator(coordinator, store)
    server.start()
"""

import json
import logging
import math
import threading
import time
from http.server import HTTPServer, BaseHTTPRequestHandler
from socketserver import ThreadingMixIn
from typing import Any, Dict, Optional
from urllib.parse import unquote, urlparse

import numpy as np

from ..engine.coordinator import EVENT_ROSTER, EVENT_TIMER
from ..interfaces.countdown_state import RosterValidationError
from ..timing.board import build_snapshot

logger = logging.getLogger(__name__)


class NumpyEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy types."""
    def default(self, obj):
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        return super().default(obj)


def format_sse(event: str, payload: Dict[str, Any], event_id: Optional[int] = None) -> bytes:
    """Encode one Server-Sent Event."""
    lines = []
    if event_id is not None:
        lines.append(f"id: {event_id}")
    lines.append(f"event: {event}")
    lines.append(f"data: {json.dumps(payload, cls=NumpyEncoder)}")
    return ('\n'.join(lines) + '\n\n').encode()


class WebRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for rally-sync endpoints."""

    # Class-level references
    coordinator = None
    store = None
    access_code: str = ''
    heartbeat_interval: float = 15.0
    shutdown_event: Optional[threading.Event] = None

    def log_message(self, format, *args):
        """Route HTTP access logs to debug level."""
        logger.debug("%s - %s", self.address_string(), format % args)

    def do_GET(self):
        """Handle GET requests."""
        path = urlparse(self.path).path

        if path == '/health':
            self._handle_health()
        elif path == '/status':
            self._handle_status()
        elif path == '/metrics':
            self._handle_metrics()
        elif path == '/api/state':
            self._handle_api_state()
        elif path == '/api/roster':
            self._handle_api_roster()
        elif path == '/api/timeline':
            self._handle_api_timeline()
        elif path.startswith('/api/leaders/'):
            # /api/leaders/{phase}/{id}
            parts = path[len('/api/leaders/'):].split('/', 1)
            if len(parts) != 2 or not all(parts):
                self._send_json({'error': 'Expected /api/leaders/{phase}/{id}'}, 400)
            else:
                self._handle_api_leader(unquote(parts[0]), unquote(parts[1]))
        elif path == '/api/notes':
            self._handle_api_notes()
        elif path == '/events':
            self._handle_sse()
        else:
            self.send_error(404, "Not Found")

    def do_POST(self):
        """Handle POST requests."""
        path = urlparse(self.path).path

        body = self._read_json()
        if body is None:
            return

        if path == '/api/timer/start':
            self._handle_start(body)
        elif path == '/api/timer/cancel':
            self._handle_cancel()
        elif path == '/api/roster':
            self._handle_replace_roster(body)
        elif path == '/api/notes':
            self._handle_set_notes(body)
        else:
            self.send_error(404, "Not Found")

    def _read_json(self) -> Optional[Dict[str, Any]]:
        """Decode the request body, replying 400 and returning None if invalid."""
        try:
            length = int(self.headers.get('Content-Length', 0) or 0)
        except ValueError:
            self._send_json({'error': 'Invalid Content-Length'}, 400)
            return None
        raw = self.rfile.read(length) if length > 0 else b''
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            self._send_json({'error': f'Invalid JSON: {e}'}, 400)
            return None
        if not isinstance(data, dict):
            self._send_json({'error': 'Expected a JSON object'}, 400)
            return None
        return data

    def _send_json(self, data: Any, status: int = 200):
        """Send JSON response."""
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Access-Control-Allow-Origin', '*')
        self.end_headers()
        self.wfile.write(json.dumps(data, indent=2, cls=NumpyEncoder).encode())

    def _require_coordinator(self) -> bool:
        if not self.coordinator:
            self._send_json({'error': 'No coordinator connected'}, 503)
            return False
        return True

    def _check_access_code(self, body: Dict[str, Any]) -> bool:
        if self.access_code and body.get('code') != self.access_code:
            self._send_json({'error': 'Invalid access code'}, 403)
            return False
        return True

    # =========================================================================
    # Health endpoints
    # =========================================================================

    def _handle_health(self):
        """Basic health check."""
        self.send_response(200)
        self.send_header('Content-Type', 'text/plain')
        self.end_headers()
        self.wfile.write(b'OK\n')

    def _handle_status(self):
        """JSON coordinator status."""
        if not self._require_coordinator():
            return
        try:
            self._send_json(self.coordinator.get_status())
        except Exception as e:
            self._send_json({'error': str(e)}, 500)

    def _handle_metrics(self):
        """Prometheus-compatible metrics."""
        if not self.coordinator:
            self.send_response(503)
            self.send_header('Content-Type', 'text/plain')
            self.end_headers()
            self.wfile.write(b'# No coordinator connected\n')
            return

        try:
            metrics = self._format_prometheus_metrics(self.coordinator.get_status())
            self.send_response(200)
            self.send_header('Content-Type', 'text/plain; version=0.0.4')
            self.end_headers()
            self.wfile.write(metrics.encode())
        except Exception as e:
            self.send_response(500)
            self.send_header('Content-Type', 'text/plain')
            self.end_headers()
            self.wfile.write(f'# Error: {e}\n'.encode())

    def _format_prometheus_metrics(self, status: Dict[str, Any]) -> str:
        """Format status as Prometheus metrics."""
        lines = [
            '# HELP rally_sync_state Countdown state (0=idle, 1=counting, 2=finished)',
            '# TYPE rally_sync_state gauge',
        ]
        state_map = {'idle': 0, 'counting': 1, 'finished': 2}
        lines.append(f'rally_sync_state {state_map.get(status.get("state", "idle"), 0)}')
        lines.extend([
            '',
            '# HELP rally_sync_elapsed_seconds Seconds since the countdown start instant',
            '# TYPE rally_sync_elapsed_seconds gauge',
            f'rally_sync_elapsed_seconds {status.get("elapsed_seconds", 0):.3f}',
            '',
            '# HELP rally_sync_total_duration_seconds Latest phase arrival of the current roster',
            '# TYPE rally_sync_total_duration_seconds gauge',
            f'rally_sync_total_duration_seconds {status.get("total_duration_seconds", 0):.3f}',
            '',
            '# HELP rally_sync_leaders Leaders on the roster',
            '# TYPE rally_sync_leaders gauge',
            f'rally_sync_leaders {status.get("leaders", 0)}',
            '',
            '# HELP rally_sync_viewers_connected Viewers subscribed to the event stream',
            '# TYPE rally_sync_viewers_connected gauge',
            f'rally_sync_viewers_connected {status.get("viewers_connected", 0)}',
            '',
            '# HELP rally_sync_commands_rejected_total Start commands rejected while counting',
            '# TYPE rally_sync_commands_rejected_total counter',
            f'rally_sync_commands_rejected_total {status.get("commands_rejected", 0)}',
            '',
            '# HELP rally_sync_broadcasts_total State and roster broadcasts',
            '# TYPE rally_sync_broadcasts_total counter',
            f'rally_sync_broadcasts_total {status.get("broadcasts", 0)}',
            '',
            '# HELP rally_sync_uptime_seconds Coordinator uptime in seconds',
            '# TYPE rally_sync_uptime_seconds gauge',
            f'rally_sync_uptime_seconds {status.get("uptime_seconds", 0):.1f}',
            '',
        ])
        return '\n'.join(lines)

    # =========================================================================
    # Read API
    # =========================================================================

    def _handle_api_state(self):
        """Countdown state, roster and timeline in one document."""
        if not self._require_coordinator():
            return
        roster = self.store.get_configuration()
        timeline = self.coordinator.current_timeline()
        self._send_json({
            'timestamp': time.time(),
            'countdown': self.coordinator.get_state().to_dict(),
            'warmup': self.coordinator.warmup,
            'roster': roster.to_dict(),
            'timeline': timeline.to_dict(),
        })

    def _handle_api_roster(self):
        if not self._require_coordinator():
            return
        self._send_json(self.store.get_configuration().to_dict())

    def _current_snapshot(self):
        now = time.time()
        timeline = self.coordinator.current_timeline()
        return timeline, build_snapshot(
            timeline,
            self.coordinator.get_state(),
            self.coordinator.elapsed(now),
            self.coordinator.warmup,
        )

    def _handle_api_timeline(self):
        """Timeline plus every leader's status at the server's clock."""
        if not self._require_coordinator():
            return
        timeline, snapshot = self._current_snapshot()
        self._send_json({
            'timeline': timeline.to_dict(),
            'board': snapshot.to_dict(),
        })

    def _handle_api_leader(self, phase_key: str, leader_id: str):
        """Single leader view."""
        if not self._require_coordinator():
            return
        timeline, snapshot = self._current_snapshot()
        timing = timeline.find_leader(phase_key, leader_id)
        row = snapshot.leader(phase_key, leader_id)
        if timing is None or row is None:
            self._send_json({'error': 'Leader not found'}, 404)
            return
        self._send_json({
            'timing': timing.to_dict(),
            'status': row.to_dict(),
            'headline': snapshot.headline,
            'progress_pct': snapshot.progress_pct,
            'total_mission_time': timeline.total_duration + self.coordinator.warmup,
        })

    def _handle_api_notes(self):
        if not self._require_coordinator():
            return
        self._send_json(self.store.get_notes())

    # =========================================================================
    # Commands
    # =========================================================================

    def _handle_start(self, body: Dict[str, Any]):
        if not self._require_coordinator():
            return
        start_instant = body.get('start_instant')
        if start_instant is not None:
            try:
                start_instant = float(start_instant)
            except (TypeError, ValueError):
                start_instant = math.nan
            if not math.isfinite(start_instant):
                self._send_json({'error': 'start_instant must be a finite number'}, 400)
                return

        accepted = self.coordinator.start(start_instant)
        state = self.coordinator.get_state().to_dict()
        if accepted:
            self._send_json({'accepted': True, 'countdown': state})
        else:
            self._send_json({
                'accepted': False,
                'error': 'Countdown already running',
                'countdown': state,
            }, 409)

    def _handle_cancel(self):
        if not self._require_coordinator():
            return
        state = self.coordinator.cancel()
        self._send_json({'accepted': True, 'countdown': state.to_dict()})

    def _handle_replace_roster(self, body: Dict[str, Any]):
        if not self._require_coordinator() or not self._check_access_code(body):
            return
        document = {k: v for k, v in body.items() if k != 'code'}
        try:
            roster = self.store.replace_configuration(document)
        except RosterValidationError as e:
            self._send_json({'error': str(e)}, 400)
            return
        except OSError as e:
            logger.error(f"Failed to save roster: {e}")
            self._send_json({'error': str(e)}, 500)
            return
        self._send_json({'message': 'Roster updated', 'roster': roster.to_dict()})

    def _handle_set_notes(self, body: Dict[str, Any]):
        if not self._require_coordinator() or not self._check_access_code(body):
            return
        try:
            notes = self.store.set_notes(body.get('title', ''), body.get('content', ''))
        except OSError as e:
            logger.error(f"Failed to save notes: {e}")
            self._send_json({'error': str(e)}, 500)
            return
        self._send_json(notes)

    # =========================================================================
    # Server-Sent Events
    # =========================================================================

    def _handle_sse(self):
        """Broadcast channel: current state on connect, then every change."""
        if not self._require_coordinator():
            return

        snapshot = self.coordinator.connect()
        subscription = snapshot.subscription

        self.send_response(200)
        self.send_header('Content-Type', 'text/event-stream')
        self.send_header('Cache-Control', 'no-cache')
        self.send_header('Connection', 'keep-alive')
        self.send_header('Access-Control-Allow-Origin', '*')
        self.end_headers()

        try:
            self.wfile.write(format_sse(
                EVENT_ROSTER,
                self.coordinator.roster_payload(snapshot.roster, snapshot.timeline),
            ))
            self.wfile.write(format_sse(EVENT_TIMER, snapshot.state.to_dict()))
            self.wfile.flush()

            while not subscription.closed:
                if self.shutdown_event is not None and self.shutdown_event.is_set():
                    break
                item = subscription.get(timeout=self.heartbeat_interval)
                if item is None:
                    self.wfile.write(b': keepalive\n\n')
                else:
                    self.wfile.write(format_sse(item.event, item.payload, item.sequence))
                self.wfile.flush()

        except (BrokenPipeError, ConnectionResetError):
            pass  # Viewer disconnected; it resyncs on reconnect
        finally:
            self.coordinator.disconnect(subscription)


class WebServer:
    """
    HTTP server for rally-sync.

    Runs in a background thread; each request (including every SSE viewer)
    gets its own handler thread.
    """

    def __init__(self, port: int = 3001, bind_address: str = '0.0.0.0',
                 access_code: str = '', heartbeat_interval: float = 15.0):
        """
        Initialize the web server.

        Args:
            port: HTTP port to listen on
            bind_address: Address to bind to (default: all interfaces)
            access_code: Code required for roster/notes edits ('' disables)
            heartbeat_interval: Seconds between SSE keepalive comments
        """
        self.port = port
        self.bind_address = bind_address
        self.server: Optional[HTTPServer] = None
        self.thread: Optional[threading.Thread] = None
        self.coordinator = None
        self.store = None
        self._running = False
        self._shutdown_event = threading.Event()

        WebRequestHandler.access_code = access_code
        WebRequestHandler.heartbeat_interval = heartbeat_interval
        WebRequestHandler.shutdown_event = self._shutdown_event

    def set_coordinator(self, coordinator, store):
        """
        Connect the countdown coordinator and roster store.

        Args:
            coordinator: CountdownCoordinator instance
            store: RosterStore instance
        """
        self.coordinator = coordinator
        self.store = store
        WebRequestHandler.coordinator = coordinator
        WebRequestHandler.store = store

    def start(self):
        """Start the web server in a background thread."""
        if self._running:
            logger.warning("Web server already running")
            return

        try:
            # Use ThreadingMixIn for concurrent request handling
            class ThreadedHTTPServer(ThreadingMixIn, HTTPServer):
                daemon_threads = True
                allow_reuse_address = True

            self._shutdown_event.clear()
            self.server = ThreadedHTTPServer(
                (self.bind_address, self.port),
                WebRequestHandler
            )
            self._running = True

            self.thread = threading.Thread(
                target=self._serve,
                name="WebServer",
                daemon=True
            )
            self.thread.start()

            logger.info(f"Web server started on http://{self.bind_address}:{self.port}")
            logger.info(f"  GET  /api/state        - Countdown, roster, timeline")
            logger.info(f"  GET  /api/timeline     - Leader statuses")
            logger.info(f"  POST /api/timer/start  - Start countdown")
            logger.info(f"  POST /api/timer/cancel - Cancel countdown")
            logger.info(f"  GET  /events           - Server-Sent Events")

        except OSError as e:
            logger.error(f"Failed to start web server: {e}")
            self._running = False
            raise

    def _serve(self):
        """Server loop (runs in background thread)."""
        self.server.serve_forever()

    def stop(self):
        """Stop the web server."""
        self._running = False
        self._shutdown_event.set()
        if self.coordinator:
            # Wake SSE handlers parked on their queues
            self.coordinator.broadcaster.close_all()
        if self.server:
            try:
                self.server.shutdown()
                self.server.server_close()
            except OSError:
                pass
            self.server = None
        if self.thread:
            self.thread.join(timeout=2.0)
        logger.info("Web server stopped")
