"""Plain-text rendering of a ViewerSnapshot for the terminal viewer."""

from typing import List, Optional, TextIO
import sys

from ..interfaces.countdown_state import RosterConfig
from ..timing.board import ViewerSnapshot


def render_board(snapshot: ViewerSnapshot, roster: Optional[RosterConfig] = None) -> str:
    """
    Format the board as text, one block per phase.

    Phases come from the roster when given (so empty phases still show),
    otherwise from the order leaders appear in the snapshot.
    """
    lines: List[str] = []
    lines.append(f"== {snapshot.headline} ==")
    if snapshot.warmup_remaining is not None:
        lines.append(f"   warmup: {snapshot.warmup_remaining}")
    if snapshot.status.value == 'counting':
        lines.append(f"   progress: {snapshot.progress_pct:5.1f}%")

    if roster is not None:
        phases = [(p.key, p.title or p.key) for p in roster.phases]
    else:
        phases = []
        for row in snapshot.leaders:
            if row.phase_key not in [key for key, _ in phases]:
                phases.append((row.phase_key, row.phase_key))

    for key, title in phases:
        lines.append("")
        lines.append(title.upper())
        rows = snapshot.phase_rows(key)
        if not rows:
            lines.append("  No leaders assigned")
            continue
        for row in rows:
            lines.append(
                f"  {row.name:<20} {row.label.value:<11} "
                f"launch {row.launch_display:>6}  hit {row.arrival_display:>6}"
            )

    return '\n'.join(lines)


class TerminalRenderer:
    """Redraws the board in place on an ANSI terminal."""

    CLEAR = "\x1b[2J\x1b[H"

    def __init__(self, stream: TextIO = sys.stdout, roster_source=None):
        self.stream = stream
        self.roster_source = roster_source

    def __call__(self, snapshot: ViewerSnapshot):
        roster = self.roster_source() if self.roster_source else None
        self.stream.write(self.CLEAR + render_board(snapshot, roster) + "\n")
        self.stream.flush()
