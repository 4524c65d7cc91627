"""
Roster Store - JSON document holding roster, settings, countdown record
and notes page.

The engine treats everything here as opaque structured records: it reads
the roster through get_configuration(), is told about edits through
on_configuration_changed(), and persists the countdown record so a restart
can detect (and discard) a stale countdown.

The file is updated atomically (write to temp, rename) to prevent partial
reads.

Usage:
    store = RosterStore('/var/lib/rally-sync/roster.json', phases=[...])
    store.on_configuration_changed(coordinator.on_configuration_changed)
    store.replace_configuration(new_roster)
"""

import copy
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from ..interfaces.countdown_state import (
    CountdownState,
    PhaseConfig,
    RosterConfig,
    RosterValidationError,
)

logger = logging.getLogger(__name__)

ConfigurationHandler = Callable[[RosterConfig], None]

# Three-phase reference deployment
DEFAULT_PHASES = [
    {'key': 'main', 'title': 'Phase 1: Main'},
    {'key': 'counter', 'title': 'Phase 2: Counter'},
    {'key': 'counter_counter', 'title': 'Phase 3: Counter-Counter'},
]


class RosterStore:
    """
    File-backed roster store.

    The configured phase list fixes the number, order and keys of phases;
    stored documents are reconciled against it on load, and replacements
    that change it are rejected.
    """

    DEFAULT_PATH = "rally_sync_roster.json"

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        phases: Optional[Sequence[Dict[str, Any]]] = None,
    ):
        """
        Initialize the roster store and load the document from disk.

        Args:
            path: JSON document path (created if missing)
            phases: Configured phase definitions ({'key', 'title'} dicts)
        """
        self.path = Path(path or self.DEFAULT_PATH)
        self.phase_defs = [dict(p) for p in (phases or DEFAULT_PHASES)]
        self.write_count = 0

        self._lock = threading.RLock()
        # Held across write and notification so handlers see edits in order
        self._notify_lock = threading.Lock()
        self._handlers: List[ConfigurationHandler] = []
        self._roster = RosterConfig()
        self._countdown: Dict[str, Any] = CountdownState().to_dict()
        self._notes: Dict[str, str] = {'title': '', 'content': ''}

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._load()

        logger.info(f"RosterStore initialized: {self.path} ({len(self.phase_defs)} phases)")

    @property
    def phase_keys(self) -> List[str]:
        return [str(p['key']) for p in self.phase_defs]

    # =========================================================================
    # Load / save
    # =========================================================================

    def _empty_roster(self) -> RosterConfig:
        return RosterConfig(phases=[
            PhaseConfig(key=str(p['key']), title=str(p.get('title', p['key'])))
            for p in self.phase_defs
        ])

    def _reconcile(self, stored: RosterConfig) -> RosterConfig:
        """Fit a stored roster onto the configured phase list."""
        result = self._empty_roster()
        for phase in result.phases:
            existing = stored.get_phase(phase.key)
            if existing is not None:
                phase.offset = existing.offset
                phase.leaders = existing.leaders

        dropped = [p.key for p in stored.phases if p.key not in self.phase_keys]
        if dropped:
            logger.warning(f"Stored phases not in configuration, dropped: {dropped}")
        return result

    def _load(self):
        if not self.path.exists():
            logger.info("No roster document found, starting fresh")
            self._roster = self._empty_roster()
            self._save()
            return

        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
            self._roster = self._reconcile(RosterConfig.from_dict(data))
            countdown = data.get('countdown', self._countdown)
            if isinstance(countdown, dict):
                self._countdown = countdown
            else:
                logger.warning(f"Discarding malformed countdown record {countdown!r}")
            notes = data.get('notes')
            if not isinstance(notes, dict):
                notes = {}
            self._notes = {
                'title': str(notes.get('title', '')),
                'content': str(notes.get('content', '')),
            }
            logger.info(
                f"Loaded roster: {sum(len(p.leaders) for p in self._roster.phases)} leaders"
            )
        except (json.JSONDecodeError, RosterValidationError) as e:
            corrupt_path = self.path.with_suffix('.corrupt')
            logger.error(f"Invalid roster document ({e}), moved to {corrupt_path}")
            os.replace(self.path, corrupt_path)
            self._roster = self._empty_roster()
            self._save()

    def _document(self) -> Dict[str, Any]:
        data = self._roster.to_dict()
        data['countdown'] = dict(self._countdown)
        data['notes'] = dict(self._notes)
        return data

    def _save(self):
        """Atomic write: temp file in the same directory, then rename."""
        fd, temp_path = tempfile.mkstemp(
            dir=self.path.parent,
            prefix='.rally_sync_',
            suffix='.tmp'
        )
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(self._document(), f, indent=2)
            os.replace(temp_path, self.path)
            self.write_count += 1
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    # =========================================================================
    # Roster
    # =========================================================================

    def get_configuration(self) -> RosterConfig:
        """Deep copy of the current roster."""
        with self._lock:
            return copy.deepcopy(self._roster)

    def replace_configuration(self, config: Union[RosterConfig, Dict[str, Any]]) -> RosterConfig:
        """
        Replace the whole roster and notify handlers.

        Raises:
            RosterValidationError: malformed document or phase list differs
                from the configured one
        """
        if isinstance(config, dict):
            config = RosterConfig.from_dict(config)

        keys = [phase.key for phase in config.phases]
        if keys != self.phase_keys:
            raise RosterValidationError(
                f"Phase list {keys} does not match configured phases {self.phase_keys}"
            )

        with self._notify_lock:
            with self._lock:
                self._roster = copy.deepcopy(config)
                self._save()
                snapshot = copy.deepcopy(self._roster)
                handlers = list(self._handlers)

            logger.info(
                f"Roster replaced: "
                + ", ".join(f"{p.key}={len(p.leaders)}" for p in snapshot.phases)
            )
            for handler in handlers:
                handler(copy.deepcopy(snapshot))
        return snapshot

    def on_configuration_changed(self, handler: ConfigurationHandler):
        """Register a push notification for every roster edit."""
        with self._lock:
            self._handlers.append(handler)

    # =========================================================================
    # Countdown record
    # =========================================================================

    def load_countdown(self) -> CountdownState:
        with self._lock:
            try:
                return CountdownState.from_dict(self._countdown)
            except (ValueError, TypeError) as e:
                logger.warning(f"Unreadable countdown record ({e}), treating as idle")
                return CountdownState()

    def save_countdown(self, state: CountdownState):
        with self._lock:
            self._countdown = state.to_dict()
            self._save()

    # =========================================================================
    # Notes page
    # =========================================================================

    def get_notes(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._notes)

    def set_notes(self, title: str, content: str) -> Dict[str, str]:
        with self._lock:
            self._notes = {'title': str(title), 'content': str(content)}
            self._save()
            return dict(self._notes)
