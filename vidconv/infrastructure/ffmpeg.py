import logging
import subprocess
import threading
from pathlib import Path
from typing import IO, List, Optional

from vidconv.domain.errors import FFMPEG_NOT_FOUND_MESSAGE, LAUNCH_FAILED_MESSAGE, LaunchError


class StderrCollector:
    """Drains a process's stderr into memory on a daemon thread.

    ffmpeg can write a lot of diagnostics; reading it concurrently keeps the
    pipe from filling up while the progress stream is being consumed.
    """

    def __init__(self, stream: Optional[IO[bytes]]):
        self._stream = stream
        self._chunks: List[str] = []
        self._thread = threading.Thread(target=self._drain, name="ffmpeg-stderr", daemon=True)

    def start(self) -> "StderrCollector":
        self._thread.start()
        return self

    def _drain(self):
        if self._stream is None:
            return
        for raw in iter(self._stream.readline, b""):
            self._chunks.append(raw.decode("utf-8", errors="replace"))

    def join(self, timeout: Optional[float] = None):
        self._thread.join(timeout)

    def text(self) -> str:
        return "".join(self._chunks)


class FFmpegAdapter:
    """Launches ffmpeg for a single conversion with machine-readable progress."""

    def __init__(self, ffmpeg_path: str = "ffmpeg"):
        self.ffmpeg_path = ffmpeg_path
        self.logger = logging.getLogger(__name__)

    def _build_command(self, input_path: Path, output_path: Path) -> List[str]:
        """Output format is implied by the output file extension."""
        return [
            self.ffmpeg_path,
            "-y",  # Overwrite output files
            "-i", str(input_path),
            "-progress", "pipe:1",
            "-nostats",
            str(output_path),
        ]

    def start(self, input_path: Path, output_path: Path) -> subprocess.Popen:
        """Spawns ffmpeg with stdout as the progress stream and stderr piped.

        Raises LaunchError when the executable is missing or the OS refuses
        to spawn it.
        """
        cmd = self._build_command(input_path, output_path)
        self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")
        try:
            return subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as e:
            self.logger.error(f"ffmpeg start error: {e}")
            raise LaunchError(FFMPEG_NOT_FOUND_MESSAGE) from e
        except OSError as e:
            self.logger.error(f"ffmpeg start error: {e}")
            raise LaunchError(LAUNCH_FAILED_MESSAGE) from e
