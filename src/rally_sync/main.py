#!/usr/bin/env python3
"""
rally-sync: Phased Timing Synchronization daemon

Main entry point. In server mode this process:
1. Loads the roster document (resetting any stale countdown to idle)
2. Owns the authoritative countdown state
3. Serves the JSON API and the SSE broadcast channel
4. Runs the supervisory check that declares the operation finished

Usage:
    # Start the coordinator
    python -m rally_sync --config /etc/rally-sync/config.toml

    # Terminal viewer attached to a running coordinator
    python -m rally_sync --watch http://127.0.0.1:3001

    # Issue commands
    python -m rally_sync --start http://127.0.0.1:3001
    python -m rally_sync --cancel http://127.0.0.1:3001
"""

import argparse
import copy
import logging
import signal
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional

import toml

# Set up logging before imports that use it
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger('rally-sync')

from .engine.broadcast import Broadcaster
from .engine.coordinator import CountdownCoordinator
from .store.roster_store import DEFAULT_PHASES, RosterStore
from .timing.classifier import DEFAULT_WARMUP_SECONDS
from .viewer.tick_loop import DEFAULT_TICK_INTERVAL


DEFAULT_CONFIG: Dict[str, Any] = {
    'general': {
        'store_path': 'rally_sync_roster.json',
    },
    'countdown': {
        'warmup_seconds': DEFAULT_WARMUP_SECONDS,
        'supervisor_interval': 0.5,
    },
    'phases': DEFAULT_PHASES,
    'web': {
        'port': 3001,
        'bind_address': '0.0.0.0',
        'access_code': '',
        'heartbeat_interval': 15.0,
        'max_viewer_backlog': 256,
    },
    'viewer': {
        'tick_interval': DEFAULT_TICK_INTERVAL,
        'server_url': 'http://127.0.0.1:3001',
    },
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a TOML file over the built-in defaults.

    Tables are merged one level deep; a [[phases]] array in the file
    replaces the default phase list entirely.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    if not config_path:
        return config

    path = Path(config_path)
    if not path.exists():
        logger.warning(f"Config file {path} not found, using defaults")
        return config

    with open(path, 'r') as f:
        loaded = toml.load(f)

    for key, value in loaded.items():
        if isinstance(value, dict) and isinstance(config.get(key), dict):
            config[key].update(value)
        else:
            config[key] = value

    return config


class SyncDaemon:
    """
    Coordinator process.

    Wires the roster store, the countdown coordinator and the web server,
    and runs the supervisory loop until stopped.
    """

    def __init__(self, config: Dict[str, Any], store_path: Optional[str] = None):
        """
        Initialize the daemon.

        Args:
            config: Configuration dictionary (see DEFAULT_CONFIG)
            store_path: Override roster document path
        """
        self.config = config
        countdown_cfg = config.get('countdown', {})
        web_cfg = config.get('web', {})

        self.warmup = float(countdown_cfg.get('warmup_seconds', DEFAULT_WARMUP_SECONDS))
        self.supervisor_interval = float(countdown_cfg.get('supervisor_interval', 0.5))
        self.web_port = int(web_cfg.get('port', 3001))

        self.store = RosterStore(
            store_path or config.get('general', {}).get('store_path'),
            phases=config.get('phases') or DEFAULT_PHASES,
        )
        self.broadcaster = Broadcaster(max_queue=int(web_cfg.get('max_viewer_backlog', 256)))
        self.coordinator = CountdownCoordinator(
            self.store,
            broadcaster=self.broadcaster,
            warmup=self.warmup,
        )
        self.web_server = None
        self.running = False

        logger.info("=" * 60)
        logger.info("rally-sync initializing")
        logger.info(f"  Roster: {self.store.path}")
        logger.info(f"  Phases: {', '.join(self.store.phase_keys)}")
        logger.info(f"  Warmup: {self.warmup:.1f}s")
        logger.info(f"  Web port: {self.web_port}")
        logger.info("=" * 60)

    def start(self):
        """Start the web server and run the supervisory loop (blocking)."""
        logger.info("Starting rally-sync daemon")
        self.running = True

        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        if self.web_port > 0:
            from .web import WebServer
            web_cfg = self.config.get('web', {})
            self.web_server = WebServer(
                port=self.web_port,
                bind_address=web_cfg.get('bind_address', '0.0.0.0'),
                access_code=str(web_cfg.get('access_code', '')),
                heartbeat_interval=float(web_cfg.get('heartbeat_interval', 15.0)),
            )
            self.web_server.set_coordinator(self.coordinator, self.store)
            self.web_server.start()

        try:
            self._supervisor_loop()
        finally:
            self._cleanup()

    def _supervisor_loop(self):
        logger.info("Entering supervisor loop")
        while self.running:
            try:
                self.coordinator.supervise()
            except Exception as e:
                logger.exception(f"Error in supervisor check: {e}")
            time.sleep(self.supervisor_interval)

    def _signal_handler(self, signum, frame):
        logger.info(f"Received signal {signum}")
        self.running = False

    def _cleanup(self):
        if self.web_server:
            self.web_server.stop()
        status = self.coordinator.get_status()
        logger.info("rally-sync stopped")
        logger.info(f"  Uptime: {status['uptime_seconds']:.1f}s")
        logger.info(f"  Broadcasts: {status['broadcasts']}")
        logger.info(f"  Operations finished: {status['operations_finished']}")


def run_watch(config: Dict[str, Any], server_url: str):
    """Terminal viewer: follow the coordinator and redraw every tick."""
    from .viewer.client import EventStreamClient
    from .viewer.render import TerminalRenderer
    from .viewer.tick_loop import ViewerTickLoop

    viewer_cfg = config.get('viewer', {})
    loop = ViewerTickLoop(
        warmup=float(config.get('countdown', {}).get('warmup_seconds', DEFAULT_WARMUP_SECONDS)),
        tick_interval=float(viewer_cfg.get('tick_interval', DEFAULT_TICK_INTERVAL)),
    )
    loop.on_tick = TerminalRenderer(roster_source=lambda: loop.roster)
    client = EventStreamClient(server_url, loop)

    loop.start()
    client.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        client.stop()
        loop.stop()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='rally-sync: Phased Timing Synchronization daemon',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start the coordinator with a config file
    python -m rally_sync --config /etc/rally-sync/config.toml

    # Follow a running coordinator in the terminal
    python -m rally_sync --watch http://127.0.0.1:3001

    # Start / cancel the shared countdown
    python -m rally_sync --start http://127.0.0.1:3001
    python -m rally_sync --cancel http://127.0.0.1:3001
        """
    )

    parser.add_argument(
        '--config', '-c',
        help='Path to TOML configuration file'
    )
    parser.add_argument(
        '--store', '-s',
        help='Roster document path (overrides config)'
    )
    parser.add_argument(
        '--port', '-p',
        type=int,
        help='HTTP port (overrides config, 0 to disable)'
    )
    parser.add_argument(
        '--warmup',
        type=float,
        help='Warmup seconds before phase 0 (overrides config)'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        '--watch',
        nargs='?',
        const='',
        metavar='URL',
        help='Run the terminal viewer against a coordinator'
    )
    mode.add_argument(
        '--start',
        nargs='?',
        const='',
        metavar='URL',
        help='Send the start command to a coordinator'
    )
    mode.add_argument(
        '--cancel',
        nargs='?',
        const='',
        metavar='URL',
        help='Send the cancel command to a coordinator'
    )

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    config = load_config(args.config)

    # Apply command-line overrides
    if args.port is not None:
        config.setdefault('web', {})['port'] = args.port
    if args.warmup is not None:
        config.setdefault('countdown', {})['warmup_seconds'] = args.warmup

    # Bare --watch/--start/--cancel use [viewer] server_url
    server_url = config.get('viewer', {}).get('server_url', 'http://127.0.0.1:3001')

    if args.watch is not None:
        run_watch(config, args.watch or server_url)
    elif args.start is not None or args.cancel is not None:
        from .viewer.client import send_cancel, send_start
        try:
            if args.start is not None:
                status, reply = send_start(args.start or server_url)
            else:
                status, reply = send_cancel(args.cancel or server_url)
        except OSError as e:
            logger.error(f"Coordinator unreachable: {e}")
            sys.exit(1)
        logger.info(f"HTTP {status}: {reply}")
        sys.exit(0 if status == 200 else 1)
    else:
        daemon = SyncDaemon(config, store_path=args.store)
        daemon.start()


if __name__ == '__main__':
    main()
