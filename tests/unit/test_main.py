from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

from vidconv import main as vidconv_main
from vidconv.domain.errors import ProbeError
from vidconv.domain.events import ConversionProgress
from vidconv.domain.models import ConversionResult, ConversionSummary


@pytest.fixture(autouse=True)
def clean_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in ("PORT", "DOWNLOADS_DIR", "FRONTEND_DIST"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(vidconv_main, "setup_logging", MagicMock())


@pytest.fixture
def served(monkeypatch):
    created = {}

    def fake_create_app(config):
        created["config"] = config
        return "app"

    def fake_run(app, host, port, log_level):
        created["run"] = (app, host, port, log_level)

    monkeypatch.setattr(vidconv_main, "create_app", fake_create_app)
    monkeypatch.setattr(vidconv_main.uvicorn, "run", fake_run)
    return created


def test_serve_defaults(served):
    result = CliRunner().invoke(vidconv_main.app, ["serve"])

    assert result.exit_code == 0, result.output
    assert served["run"] == ("app", "0.0.0.0", 3001, "warning")


def test_serve_env_then_flags(served, monkeypatch, tmp_path):
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("DOWNLOADS_DIR", str(tmp_path / "env-downloads"))

    result = CliRunner().invoke(vidconv_main.app, ["serve", "--host", "127.0.0.1", "--ffmpeg", "/opt/ffmpeg", "--debug"])

    assert result.exit_code == 0, result.output
    config = served["config"]
    assert config.server.port == 8080
    assert config.server.downloads_dir == str(tmp_path / "env-downloads")
    assert config.conversion.ffmpeg_path == "/opt/ffmpeg"
    assert served["run"] == ("app", "127.0.0.1", 8080, "debug")

    result = CliRunner().invoke(vidconv_main.app, ["serve", "--port", "9000"])
    assert served["config"].server.port == 9000


def test_serve_reads_config_file(served, config_yaml_path):
    result = CliRunner().invoke(vidconv_main.app, ["serve", "--config", str(config_yaml_path)])

    assert result.exit_code == 0, result.output
    assert served["config"].server.port == 4000
    assert served["config"].conversion.progress_step == 10


def test_serve_missing_config_exits(served, tmp_path):
    result = CliRunner().invoke(vidconv_main.app, ["serve", "--config", str(tmp_path / "missing.yaml")])

    assert result.exit_code == 1
    assert "run" not in served


def test_probe_prints_metadata(monkeypatch, tmp_path, ten_second_metadata):
    media = tmp_path / "clip.mov"
    media.write_bytes(b"video")
    adapter = MagicMock()
    adapter.probe.return_value = ten_second_metadata
    monkeypatch.setattr(vidconv_main, "FFprobeAdapter", lambda path: adapter)

    result = CliRunner().invoke(vidconv_main.app, ["probe", str(media)])

    assert result.exit_code == 0, result.output
    assert "1920x1080" in result.output
    assert "h264" in result.output


def test_probe_failure(monkeypatch, tmp_path):
    media = tmp_path / "notes.txt"
    media.write_text("not a video")
    adapter = MagicMock()
    adapter.probe.side_effect = ProbeError("ffprobe failed")
    monkeypatch.setattr(vidconv_main, "FFprobeAdapter", lambda path: adapter)

    result = CliRunner().invoke(vidconv_main.app, ["probe", str(media)])

    assert result.exit_code == 1


class DummyOrchestrator:
    result = None

    def __init__(self, event_bus, **kwargs):
        self.event_bus = event_bus
        self.kwargs = kwargs

    def convert(self, request):
        DummyOrchestrator.request = request
        self.event_bus.publish(ConversionProgress(file_name=request.file_name, progress=50, output_name=request.output_name))
        return DummyOrchestrator.result


def test_convert_success(monkeypatch, tmp_path):
    media = tmp_path / "clip.mov"
    media.write_bytes(b"video")
    DummyOrchestrator.result = ConversionResult.succeeded(ConversionSummary(
        name="clip.mov", output_name="x.webm", download_url="/x.webm", duration=3.0, file_size=10,
    ))
    monkeypatch.setattr(vidconv_main, "ConversionOrchestrator", DummyOrchestrator)

    result = CliRunner().invoke(
        vidconv_main.app, ["convert", str(media), "--format", "webm", "--output-dir", str(tmp_path / "out")]
    )

    assert result.exit_code == 0, result.output
    assert DummyOrchestrator.request.input_path == media
    assert DummyOrchestrator.request.output_path.parent == tmp_path / "out"
    assert DummyOrchestrator.request.output_format == "webm"
    # the source file is never removed by the CLI
    assert media.exists()


def test_convert_failure_exit_code(monkeypatch, tmp_path):
    media = tmp_path / "clip.mov"
    media.write_bytes(b"video")
    DummyOrchestrator.result = ConversionResult.failed("Invalid or corrupted video file")
    monkeypatch.setattr(vidconv_main, "ConversionOrchestrator", DummyOrchestrator)

    result = CliRunner().invoke(vidconv_main.app, ["convert", str(media), "--format", "mp4"])

    assert result.exit_code == 1
