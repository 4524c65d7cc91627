"""Pure timing computations: timeline calculation and status classification."""

from .timeline import compute_timeline, Timeline, PhaseTiming, LeaderTiming
from .classifier import (
    StatusLabel,
    Classification,
    classify,
    classify_many,
    format_countdown,
    DEFAULT_WARMUP_SECONDS,
)

__all__ = [
    'compute_timeline',
    'Timeline',
    'PhaseTiming',
    'LeaderTiming',
    'StatusLabel',
    'Classification',
    'classify',
    'classify_many',
    'format_countdown',
    'DEFAULT_WARMUP_SECONDS',
]
