import pytest

from vidconv.domain.models import MediaTotals, ProgressKind, ProgressSample
from vidconv.pipeline.progress import (
    ProgressThrottle,
    clamp,
    is_terminal,
    normalize,
    parse_progress_line,
    percent_from_frame,
    percent_from_timecode,
    percent_from_timestamp,
)

TEN_SECONDS = MediaTotals(duration_seconds=10.0, total_frames=250.0)


def sample(key, value):
    parsed = parse_progress_line(f"{key}={value}")
    assert parsed is not None
    return parsed


def test_parse_progress_line_known_keys():
    parsed = parse_progress_line("out_time_ms=2000\n")
    assert parsed == ProgressSample(key="out_time_ms", raw_value="2000", kind=ProgressKind.TIMESTAMP_MILLIS)
    assert parse_progress_line("frame= 42").kind == ProgressKind.FRAME_INDEX
    assert parse_progress_line("out_time_us=1").kind == ProgressKind.TIMESTAMP_MICROS
    assert parse_progress_line("out_time=00:00:01.00").kind == ProgressKind.TIMECODE
    assert parse_progress_line("progress=end").kind == ProgressKind.TERMINAL_MARKER


def test_parse_progress_line_splits_on_first_equals():
    parsed = parse_progress_line("out_time=00:00:01=junk")
    assert parsed.raw_value == "00:00:01=junk"


@pytest.mark.parametrize("line", ["bitrate=1200kbits/s", "speed=1.2x", "no separator", "", "=5"])
def test_parse_progress_line_ignores_other_lines(line):
    assert parse_progress_line(line) is None


def test_frame_percent():
    assert percent_from_frame("125", 250) == 50
    assert percent_from_frame("1", 250) == 0
    assert percent_from_frame("125", 0) == 0
    assert percent_from_frame("garbage", 250) == 0


def test_timestamp_percent_units():
    assert normalize(sample("out_time_ms", "2000"), TEN_SECONDS) == 20
    assert normalize(sample("out_time_us", "5000000"), TEN_SECONDS) == 50
    assert percent_from_timestamp("2000", 0, 1000) == 0


def test_timecode_percent():
    assert normalize(sample("out_time", "00:00:07.50"), TEN_SECONDS) == 75
    assert percent_from_timecode("N/A", 10.0) == 0
    assert percent_from_timecode("00:07", 10.0) == 0


def test_rounding_is_half_away_from_zero():
    totals = MediaTotals(duration_seconds=0.0, total_frames=200.0)
    # 1/200 = 0.5%
    assert normalize(sample("frame", "1"), totals) == 1
    # 5/200 = 2.5%
    assert normalize(sample("frame", "5"), totals) == 3


def test_normalize_clamps_to_range():
    assert normalize(sample("frame", "1000"), TEN_SECONDS) == 100
    assert normalize(sample("frame", "-50"), TEN_SECONDS) == 0
    assert normalize(sample("out_time_ms", "inf"), TEN_SECONDS) == 0
    assert normalize(sample("out_time_ms", "nan"), TEN_SECONDS) == 0


def test_normalize_unknown_totals_reports_zero():
    unknown = MediaTotals()
    for key, value in [("frame", "100"), ("out_time_ms", "5000"), ("out_time", "00:00:05.00")]:
        assert normalize(sample(key, value), unknown) == 0


def test_terminal_marker():
    assert normalize(sample("progress", "end"), TEN_SECONDS) == 100
    assert normalize(sample("progress", "continue"), TEN_SECONDS) == 0
    assert is_terminal(sample("progress", "end"))
    assert not is_terminal(sample("progress", "continue"))
    assert not is_terminal(sample("frame", "end"))


def test_clamp():
    assert clamp(-3) == 0
    assert clamp(42) == 42
    assert clamp(250) == 100


def test_throttle_requires_step_gain():
    throttle = ProgressThrottle(step=5, last_reported=0)
    assert throttle.offer(3) == (False, 0)
    assert throttle.offer(5) == (True, 5)
    assert throttle.offer(9) == (False, 5)
    assert throttle.offer(10) == (True, 10)


def test_throttle_always_lets_100_through_once():
    throttle = ProgressThrottle(step=5, last_reported=98)
    assert throttle.offer(100) == (True, 100)
    assert throttle.offer(100) == (False, 100)


def test_throttle_never_goes_backwards():
    throttle = ProgressThrottle(step=5, last_reported=60)
    assert throttle.offer(40) == (False, 60)
    assert throttle.last_reported == 60


def test_throttle_emitted_values_are_strictly_increasing():
    throttle = ProgressThrottle(step=5)
    emitted = [v for v in [0, 2, 7, 7, 6, 13, 40, 41, 99, 100, 100] if throttle.offer(v)[0]]
    assert emitted == [0, 7, 13, 40, 99, 100]
    assert all(b > a for a, b in zip(emitted, emitted[1:]))


def test_throttle_rejects_non_positive_step():
    with pytest.raises(ValueError):
        ProgressThrottle(step=0)
