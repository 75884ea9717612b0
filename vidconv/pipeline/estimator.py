"""Duration and frame-count estimation from ffprobe metadata.

Every helper returns 0.0 for "unknown"; callers treat any value <= 0 that way.
"""

from typing import Any, Optional

from vidconv.domain.models import MediaTotals, SourceMetadata, StreamInfo


def _to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def parse_colon_duration(text: str) -> float:
    """Parse HH:MM:SS[.frac]; anything but exactly three numeric parts is unknown."""
    parts = text.split(":")
    if len(parts) != 3:
        return 0.0
    values = [_to_float(p) for p in parts]
    if any(v is None for v in values):
        return 0.0
    hours, minutes, seconds = values
    return hours * 3600 + minutes * 60 + seconds


def parse_duration_seconds(raw: Any) -> float:
    if raw is None:
        return 0.0
    text = str(raw).strip()
    if not text:
        return 0.0
    value = _to_float(text)
    if value is not None:
        return value
    if ":" in text:
        return parse_colon_duration(text)
    return 0.0


def parse_fraction(raw: Any) -> float:
    """Parse a frame rate written as a decimal or as num/den."""
    if raw is None:
        return 0.0
    text = str(raw).strip()
    if not text:
        return 0.0
    if "/" not in text:
        value = _to_float(text)
        return value if value is not None else 0.0
    num_text, den_text = text.split("/", 1)
    numerator = _to_float(num_text)
    denominator = _to_float(den_text)
    if numerator is None or denominator is None or denominator == 0:
        return 0.0
    return numerator / denominator


def duration_from_frames(nb_frames: Any, avg_frame_rate: Any) -> float:
    frames = _to_float(nb_frames)
    if frames is None or frames <= 0:
        return 0.0
    rate = parse_fraction(avg_frame_rate)
    if rate <= 0:
        return 0.0
    return frames / rate


def parse_frame_count(stream: Optional[StreamInfo]) -> float:
    """Reported nb_frames when positive, else stream duration x frame rate."""
    if stream is None:
        return 0.0
    frames = _to_float(stream.nb_frames)
    if frames is not None and frames > 0:
        return frames
    rate = parse_fraction(stream.avg_frame_rate)
    if rate <= 0:
        return 0.0
    duration = parse_duration_seconds(stream.duration)
    if duration <= 0:
        return 0.0
    return duration * rate


def resolve_duration(metadata: SourceMetadata) -> float:
    # Fallback order: format.duration, stream.duration, nb_frames / avg_frame_rate
    duration = parse_duration_seconds(metadata.format.duration)
    if duration > 0:
        return duration
    stream = metadata.primary_stream
    if stream is None:
        return 0.0
    duration = parse_duration_seconds(stream.duration)
    if duration > 0:
        return duration
    return duration_from_frames(stream.nb_frames, stream.avg_frame_rate)


def estimate_totals(metadata: SourceMetadata) -> MediaTotals:
    return MediaTotals(
        duration_seconds=resolve_duration(metadata),
        total_frames=parse_frame_count(metadata.primary_stream),
    )
