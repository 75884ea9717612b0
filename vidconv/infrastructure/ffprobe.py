import json
import logging
import subprocess
from pathlib import Path
from typing import List

from pydantic import ValidationError

from vidconv.domain.errors import ProbeError
from vidconv.domain.models import SourceMetadata


class FFprobeAdapter:
    """Wrapper around ffprobe returning container and stream metadata."""

    def __init__(self, ffprobe_path: str = "ffprobe"):
        self.ffprobe_path = ffprobe_path
        self.logger = logging.getLogger(__name__)

    def _build_command(self, file_path: Path) -> List[str]:
        return [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(file_path),
        ]

    def probe(self, file_path: Path) -> SourceMetadata:
        """Executes ffprobe once and parses its JSON report. No retries."""
        cmd = self._build_command(file_path)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise ProbeError(f"ffprobe could not be started for {file_path}: {e}") from e

        if result.returncode != 0:
            raise ProbeError(f"ffprobe failed for {file_path} (exit {result.returncode}): {result.stderr}")

        try:
            data = json.loads(result.stdout)
        except (TypeError, json.JSONDecodeError) as e:
            raise ProbeError(f"ffprobe returned invalid JSON for {file_path}: {e}") from e
        if not isinstance(data, dict):
            raise ProbeError(f"ffprobe returned unexpected output for {file_path}")

        try:
            return SourceMetadata.model_validate(
                {"format": data.get("format") or {}, "streams": data.get("streams") or []}
            )
        except ValidationError as e:
            raise ProbeError(f"ffprobe output for {file_path} has unexpected shape: {e}") from e
