"""
Pytest configuration and fixtures for rally-sync tests.
"""

import pytest
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from rally_sync.interfaces.countdown_state import Leader, PhaseConfig, RosterConfig


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def two_phase_roster():
    """Two phases: 40s leader, then a 20s leader 5s after arrival."""
    return RosterConfig(phases=[
        PhaseConfig(key='main', title='Main', leaders=[
            Leader(id='a', name='Alpha', travel_duration=40),
        ]),
        PhaseConfig(key='counter', title='Counter', offset=5, leaders=[
            Leader(id='b', name='Bravo', travel_duration=20),
        ]),
    ])


@pytest.fixture
def three_phase_roster():
    """Reference three-phase deployment with mixed travel durations."""
    return RosterConfig(phases=[
        PhaseConfig(key='main', title='Phase 1: Main', leaders=[
            Leader(id='m1', name='Marshal', travel_duration=30),
            Leader(id='m2', name='Baron', travel_duration=50),
        ]),
        PhaseConfig(key='counter', title='Phase 2: Counter', offset=10, leaders=[
            Leader(id='c1', name='Count', travel_duration=25),
        ]),
        PhaseConfig(key='counter_counter', title='Phase 3: Counter-Counter', offset=3),
    ])


@pytest.fixture
def phase_defs():
    return [
        {'key': 'main', 'title': 'Main'},
        {'key': 'counter', 'title': 'Counter'},
    ]


@pytest.fixture
def store(tmp_path, phase_defs):
    from rally_sync.store.roster_store import RosterStore
    return RosterStore(tmp_path / 'roster.json', phases=phase_defs)
