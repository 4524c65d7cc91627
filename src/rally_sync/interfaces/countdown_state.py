"""
Countdown and Roster Data Models

These dataclasses define the contract between the coordinator, the roster
store and every connected viewer. CountdownState is broadcast to viewers as
JSON; RosterConfig is the document the Roster Store persists.

Contract Version: 1.0.0
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional
import json
import math


class RosterValidationError(ValueError):
    """Raised when a roster document is malformed."""


class CountdownStatus(str, Enum):
    """Shared countdown status."""
    IDLE = "idle"             # No operation running
    COUNTING = "counting"     # Operation live, start_instant set
    FINISHED = "finished"     # Supervisor declared the operation over


@dataclass(frozen=True)
class CountdownState:
    """
    The single piece of shared mutable state, as an immutable value.

    The coordinator replaces its instance on every transition; viewers only
    ever receive copies.
    """
    status: CountdownStatus = CountdownStatus.IDLE
    start_instant: Optional[float] = None   # Epoch seconds, set while counting

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "start_instant": self.start_instant,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CountdownState":
        if not isinstance(data, dict):
            raise ValueError(f"Countdown record must be an object, got {data!r}")
        status = CountdownStatus(data.get("status", "idle"))
        start = data.get("start_instant")
        if start is not None:
            try:
                start = float(start)
            except TypeError as e:
                raise ValueError(f"Invalid start_instant {start!r}: {e}")
            if not math.isfinite(start):
                raise ValueError(f"start_instant must be finite, got {start}")
        return cls(status=status, start_instant=start)

    @classmethod
    def from_json(cls, json_str: str) -> "CountdownState":
        return cls.from_dict(json.loads(json_str))


@dataclass
class Leader:
    """An actor with an individual travel duration, member of one phase."""
    id: str
    name: str
    travel_duration: float = 0.0        # Seconds, >= 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Leader":
        if not isinstance(data, dict):
            raise RosterValidationError(f"Leader record must be an object: {data!r}")
        try:
            leader_id = str(data["id"])
            duration = float(data.get("travel_duration", 0.0))
        except (KeyError, TypeError, ValueError) as e:
            raise RosterValidationError(f"Invalid leader record {data!r}: {e}")
        if not math.isfinite(duration) or duration < 0:
            raise RosterValidationError(
                f"Leader {leader_id} needs a finite, non-negative travel_duration, "
                f"got {duration}"
            )
        return cls(
            id=leader_id,
            name=str(data.get("name", leader_id)),
            travel_duration=duration,
        )


@dataclass
class PhaseConfig:
    """
    One ordered stage of the operation.

    offset is measured from the previous phase's arrival to this phase's
    start; it is ignored for the first phase.
    """
    key: str
    title: str = ""
    offset: float = 0.0
    leaders: List[Leader] = field(default_factory=list)

    def find_leader(self, leader_id: str) -> Optional[Leader]:
        for leader in self.leaders:
            if leader.id == leader_id:
                return leader
        return None

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "title": self.title,
            "offset": self.offset,
            "leaders": [leader.to_dict() for leader in self.leaders],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PhaseConfig":
        if not isinstance(data, dict) or "key" not in data:
            raise RosterValidationError(f"Phase record without key: {data!r}")
        try:
            offset = float(data.get("offset", 0.0))
        except (TypeError, ValueError) as e:
            raise RosterValidationError(f"Invalid offset for phase {data['key']}: {e}")
        if not math.isfinite(offset):
            raise RosterValidationError(f"Offset for phase {data['key']} must be finite")

        leaders_data = data.get("leaders", [])
        if not isinstance(leaders_data, list):
            raise RosterValidationError(f"Leaders of phase {data['key']} must be a list")
        leaders = [Leader.from_dict(item) for item in leaders_data]
        seen = set()
        for leader in leaders:
            if leader.id in seen:
                raise RosterValidationError(
                    f"Duplicate leader id {leader.id} in phase {data['key']}"
                )
            seen.add(leader.id)

        return cls(
            key=str(data["key"]),
            title=str(data.get("title", data["key"])),
            offset=offset,
            leaders=leaders,
        )


@dataclass
class RosterConfig:
    """The full ordered phase list: what the Roster Store hands the engine."""
    phases: List[PhaseConfig] = field(default_factory=list)

    def get_phase(self, key: str) -> Optional[PhaseConfig]:
        for phase in self.phases:
            if phase.key == key:
                return phase
        return None

    def to_dict(self) -> dict:
        return {"phases": [phase.to_dict() for phase in self.phases]}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RosterConfig":
        phases_data = data.get("phases") if isinstance(data, dict) else None
        if not isinstance(phases_data, list):
            raise RosterValidationError("Roster document must contain a 'phases' list")
        phases = [PhaseConfig.from_dict(item) for item in phases_data]
        keys = [phase.key for phase in phases]
        if len(set(keys)) != len(keys):
            raise RosterValidationError(f"Duplicate phase keys: {keys}")
        return cls(phases=phases)

    @classmethod
    def from_json(cls, json_str: str) -> "RosterConfig":
        return cls.from_dict(json.loads(json_str))
