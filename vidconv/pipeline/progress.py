"""Progress normalization for ffmpeg `-progress` output.

ffmpeg writes blocks of `key=value` lines; a handful of keys carry position
information in different units. Everything here maps one such value onto an
integer percentage in [0, 100] and decides which percentages are worth
forwarding to clients.
"""

import math
from typing import Dict, Optional, Tuple

from vidconv.domain.models import MediaTotals, ProgressKind, ProgressSample
from vidconv.pipeline.estimator import parse_duration_seconds

DEFAULT_PROGRESS_STEP = 5
TERMINAL_VALUE = "end"

PROGRESS_KEYS: Dict[str, ProgressKind] = {
    "frame": ProgressKind.FRAME_INDEX,
    "out_time_ms": ProgressKind.TIMESTAMP_MILLIS,
    "out_time_us": ProgressKind.TIMESTAMP_MICROS,
    "out_time": ProgressKind.TIMECODE,
    "progress": ProgressKind.TERMINAL_MARKER,
}

_UNITS_PER_SECOND = {
    ProgressKind.TIMESTAMP_MILLIS: 1000.0,
    ProgressKind.TIMESTAMP_MICROS: 1_000_000.0,
}


def clamp(value: int, low: int = 0, high: int = 100) -> int:
    if value < low:
        return low
    if value > high:
        return high
    return value


def _percent(ratio: float) -> int:
    """Round half away from zero and clamp; non-finite ratios become 0."""
    if not math.isfinite(ratio):
        return 0
    scaled = ratio * 100
    rounded = math.floor(scaled + 0.5) if scaled >= 0 else math.ceil(scaled - 0.5)
    return clamp(int(rounded))


def _parse_number(value: str) -> Optional[float]:
    try:
        number = float(value.strip())
    except (AttributeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def percent_from_frame(value: str, total_frames: float) -> int:
    if total_frames <= 0:
        return 0
    current = _parse_number(value)
    if current is None:
        return 0
    return _percent(current / total_frames)


def percent_from_timestamp(value: str, duration_seconds: float, units_per_second: float) -> int:
    if duration_seconds <= 0 or units_per_second <= 0:
        return 0
    raw = _parse_number(value)
    if raw is None:
        return 0
    return _percent((raw / units_per_second) / duration_seconds)


def percent_from_timecode(value: str, duration_seconds: float) -> int:
    if duration_seconds <= 0:
        return 0
    seconds = parse_duration_seconds(value)
    if not math.isfinite(seconds) or seconds <= 0:
        return 0
    return _percent(seconds / duration_seconds)


def normalize(sample: ProgressSample, totals: MediaTotals) -> int:
    """Map one progress sample onto 0..100.

    A terminal marker reports 100 only when its value is the `end` sentinel.
    """
    kind = sample.kind
    if kind == ProgressKind.FRAME_INDEX:
        return percent_from_frame(sample.raw_value, totals.total_frames)
    if kind in _UNITS_PER_SECOND:
        return percent_from_timestamp(sample.raw_value, totals.duration_seconds, _UNITS_PER_SECOND[kind])
    if kind == ProgressKind.TIMECODE:
        return percent_from_timecode(sample.raw_value, totals.duration_seconds)
    if kind == ProgressKind.TERMINAL_MARKER:
        return 100 if sample.raw_value.strip() == TERMINAL_VALUE else 0
    return 0


def parse_progress_line(line: str) -> Optional[ProgressSample]:
    """Split a `key=value` line on the first '='; unknown keys yield None."""
    if "=" not in line:
        return None
    key, value = line.split("=", 1)
    key = key.strip()
    kind = PROGRESS_KEYS.get(key)
    if kind is None:
        return None
    return ProgressSample(key=key, raw_value=value.strip(), kind=kind)


def is_terminal(sample: ProgressSample) -> bool:
    return sample.kind == ProgressKind.TERMINAL_MARKER and sample.raw_value == TERMINAL_VALUE


class ProgressThrottle:
    """Decides which percentages reach the event channel.

    A value passes only when it is strictly above the last forwarded one and
    either reaches 100 or clears `step`. That caps traffic at roughly
    100 / step events per conversion while always letting 100 through.
    """

    def __init__(self, step: int = DEFAULT_PROGRESS_STEP, last_reported: Optional[int] = None):
        if step <= 0:
            raise ValueError(f"progress step must be positive, got {step}")
        self.step = step
        self.last_reported = -step if last_reported is None else last_reported

    def should_emit(self, current: int) -> bool:
        if current <= self.last_reported:
            return False
        if current >= 100:
            return True
        return current >= self.last_reported + self.step

    def offer(self, current: int) -> Tuple[bool, int]:
        """Record `current` if it passes; returns (emitted, last_reported)."""
        if self.should_emit(current):
            self.last_reported = current
            return True, current
        return False, self.last_reported
