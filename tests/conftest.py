import io
import stat
import sys
import textwrap
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml

from vidconv.config.models import AppConfig
from vidconv.domain.models import ConversionRequest, FormatInfo, SourceMetadata, StreamInfo
from vidconv.infrastructure.event_bus import EventBus

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config(tmp_path):
    """AppConfig pointing every writable path into tmp_path."""
    return AppConfig(
        server={
            "host": "127.0.0.1",
            "port": 3001,
            "downloads_dir": str(tmp_path / "downloads"),
            "max_upload_bytes": 1024 * 1024,
        },
        conversion={
            "ffmpeg_path": "ffmpeg",
            "ffprobe_path": "ffprobe",
            "progress_step": 5,
        },
        logging={"debug": False},
    )


@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "vidconv.yaml"

    content = {
        'server': {
            'host': '127.0.0.1',
            'port': 4000,
            'downloads_dir': str(tmp_path / "public" / "downloads"),
            'cors_origins': ['http://localhost:5173'],
        },
        'conversion': {
            'ffmpeg_path': '/opt/ffmpeg/bin/ffmpeg',
            'progress_step': 10,
        },
        'logging': {
            'debug': True,
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

# ============================================================================
# Media Fixtures
# ============================================================================

@pytest.fixture
def ten_second_metadata():
    """1080p h264 source, 10s long, 250 frames at 25 fps."""
    return SourceMetadata(
        format=FormatInfo(duration="10.000000", size="2500000", bit_rate="2000000"),
        streams=[
            StreamInfo(codec_name="h264", width=1920, height=1080, duration="10.000000",
                       nb_frames="250", avg_frame_rate="25/1"),
            StreamInfo(codec_name="aac", duration="10.000000", nb_frames="469", avg_frame_rate="0/0"),
        ],
    )


@pytest.fixture
def output_metadata():
    return SourceMetadata(
        format=FormatInfo(duration="10.010000", size="1048576", bit_rate="838000"),
        streams=[StreamInfo(codec_name="h264", width=1280, height=720)],
    )


@pytest.fixture
def conversion_request(tmp_path):
    downloads = tmp_path / "downloads"
    downloads.mkdir(exist_ok=True)
    input_path = downloads / "1111-holiday.mov"
    input_path.write_bytes(b"dummy video content " * 100)
    return ConversionRequest(
        input_path=input_path,
        file_name="holiday.mov",
        output_format="mp4",
        output_name="2222.mp4",
        output_path=downloads / "2222.mp4",
    )

# ============================================================================
# Process Fixtures
# ============================================================================

@pytest.fixture
def make_process():
    """Factory for a finished Popen stand-in with canned stdout / stderr."""

    def _make(progress_lines=(), stderr=b"", returncode=0, pid=4242):
        process = MagicMock()
        process.pid = pid
        process.stdout = io.BytesIO("".join(f"{line}\n" for line in progress_lines).encode())
        process.stderr = io.BytesIO(stderr)
        process.wait.return_value = returncode
        process.poll.return_value = None
        process.returncode = returncode
        return process

    return _make


@pytest.fixture
def fake_ffmpeg(tmp_path):
    """Writes an executable that behaves like `ffmpeg -y -i IN -progress pipe:1 -nostats OUT`.

    Behaviour is chosen by the `mode` argument of the returned factory:
    - "ok": prints a few progress blocks, writes OUT, exits 0
    - "slow": keeps printing progress for ~30s (for cancellation tests)
    - "fail": prints an encoder error to stderr and exits 1
    """

    def _write(mode="ok"):
        script = tmp_path / f"fake-ffmpeg-{mode}"
        script.write_text(textwrap.dedent(f"""\
            #!{sys.executable}
            import sys
            import time

            mode = {mode!r}
            output = sys.argv[-1]
            sys.stderr.write("ffmpeg version 6.1 Copyright (c) 2000-2023 the FFmpeg developers\\n")
            if mode == "fail":
                sys.stderr.write("Unknown encoder 'libfoo'\\n")
                sys.exit(1)
            steps = 300 if mode == "slow" else 5
            for i in range(1, steps + 1):
                ms = min(i * 2000, 10000)
                sys.stdout.write(f"frame={{i * 50}}\\nout_time_ms={{ms}}\\nprogress=continue\\n")
                sys.stdout.flush()
                if mode == "slow":
                    time.sleep(0.1)
            with open(output, "wb") as f:
                f.write(b"converted")
            sys.stdout.write("progress=end\\n")
            sys.stdout.flush()
        """))
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return Path(script)

    return _write
