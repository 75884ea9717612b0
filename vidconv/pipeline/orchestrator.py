"""Conversion orchestrator: one request in, one ConversionResult out.

Coordinates a single conversion from source inspection to terminal result:

- Probe the upload and estimate duration / frame totals
- Spawn ffmpeg and register it so it can be cancelled by file name
- Drain `-progress pipe:1` output on a reader thread, publishing throttled
  ConversionProgress events
- Wait for exit, join the reader, and reconcile cancellation flag and exit
  status into SUCCEEDED, CANCELLED or FAILED
- Re-probe the produced file to describe it to the caller

Nothing raised by the collaborators escapes `convert`; every outcome becomes
a ConversionResult, and every failure or cancellation is also published once
as a ConversionFailed event.
"""

import logging
import subprocess
import threading
from pathlib import Path
from typing import IO, Optional

from vidconv.domain.errors import LaunchError, ProbeError, StreamReadError
from vidconv.domain.events import ConversionFailed, ConversionProgress
from vidconv.domain.models import (
    CANCELLED_MESSAGE,
    ConversionRequest,
    ConversionResult,
    ConversionSummary,
    ErrorClass,
    JobState,
    MediaTotals,
    SourceMetadata,
)
from vidconv.infrastructure.event_bus import EventBus
from vidconv.infrastructure.ffmpeg import FFmpegAdapter, StderrCollector
from vidconv.infrastructure.ffprobe import FFprobeAdapter
from vidconv.pipeline.errors import OUTPUT_PROBE_FAILED_MESSAGE, SOURCE_PROBE_FAILED_MESSAGE, classify_failure
from vidconv.pipeline.estimator import estimate_totals, parse_duration_seconds
from vidconv.pipeline.progress import (
    DEFAULT_PROGRESS_STEP,
    ProgressThrottle,
    is_terminal,
    normalize,
    parse_progress_line,
)
from vidconv.pipeline.registry import JobRegistry

MAX_PROGRESS_LINE_BYTES = 1024 * 1024
_DISCARD_CHUNK = 64 * 1024


class ConversionOrchestrator:
    """Runs conversions and routes cancel requests to the registry.

    Args:
        event_bus: EventBus receiving ConversionProgress / ConversionFailed.
        ffprobe_adapter: FFprobeAdapter used for source and output inspection.
        ffmpeg_adapter: FFmpegAdapter that spawns the transcoder.
        registry: JobRegistry shared with whoever delivers cancel requests.
        progress_step: Minimum percentage gain between forwarded updates.
        max_line_bytes: Longest progress line accepted before the reader gives up.
        download_prefix: URL prefix under which output files are served.
    """

    def __init__(
        self,
        event_bus: EventBus,
        ffprobe_adapter: FFprobeAdapter,
        ffmpeg_adapter: FFmpegAdapter,
        registry: JobRegistry,
        progress_step: int = DEFAULT_PROGRESS_STEP,
        max_line_bytes: int = MAX_PROGRESS_LINE_BYTES,
        download_prefix: str = "/downloads",
    ):
        self.event_bus = event_bus
        self.ffprobe_adapter = ffprobe_adapter
        self.ffmpeg_adapter = ffmpeg_adapter
        self.registry = registry
        self.progress_step = progress_step
        self.max_line_bytes = max_line_bytes
        self.download_prefix = download_prefix.rstrip("/")
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _emit_progress(self, file_name: str, progress: int, output_name: str, completed: bool = False):
        event = ConversionProgress(
            file_name=file_name,
            progress=max(0, min(100, progress)),
            output_name=output_name,
            completed=completed,
        )
        self.logger.info(f"Progress update for {file_name}: {event.progress}%")
        self.event_bus.publish(event)

    def _emit_error(self, file_name: str, message: str):
        self.event_bus.publish(ConversionFailed(file_name=file_name, error=message))

    def _fail(self, request: ConversionRequest, message: str, error_class: ErrorClass = ErrorClass.SERVER) -> ConversionResult:
        self._emit_error(request.file_name, message)
        self._log_state(request, JobState.FAILED, message)
        return ConversionResult.failed(message, error_class)

    def _log_state(self, request: ConversionRequest, state: JobState, detail: str = ""):
        suffix = f" ({detail})" if detail else ""
        self.logger.debug(f"JOB_STATE: {request.file_name} -> {state.value}{suffix}")

    # ------------------------------------------------------------------
    # Progress stream
    # ------------------------------------------------------------------

    def _read_line(self, stream: IO[bytes]) -> bytes:
        raw = stream.readline(self.max_line_bytes + 1)
        if len(raw) > self.max_line_bytes and not raw.endswith(b"\n"):
            raise StreamReadError(f"progress line longer than {self.max_line_bytes} bytes")
        return raw

    def _discard(self, stream: IO[bytes]):
        try:
            while stream.read(_DISCARD_CHUNK):
                pass
        except (OSError, ValueError):
            pass

    def _read_progress(self, stream: Optional[IO[bytes]], request: ConversionRequest, totals: MediaTotals, throttle: ProgressThrottle):
        """Reader thread body: parse key=value lines until EOF or a stream error."""
        if stream is None:
            return
        try:
            while True:
                raw = self._read_line(stream)
                if not raw:
                    break
                sample = parse_progress_line(raw.decode("utf-8", errors="replace"))
                if sample is None:
                    continue
                if is_terminal(sample):
                    self._emit_progress(request.file_name, 100, request.output_name, completed=True)
                    continue
                current = normalize(sample, totals)
                emitted, _ = throttle.offer(current)
                if emitted:
                    self._emit_progress(request.file_name, current, request.output_name)
        except (StreamReadError, OSError, ValueError) as e:
            self.logger.error(f"progress reader error for {request.file_name}: {e}")
            # Keep the pipe empty so ffmpeg never blocks on a full stdout.
            self._discard(stream)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _remove_output(self, output_path: Path):
        try:
            output_path.unlink(missing_ok=True)
        except OSError as e:
            self.logger.warning(f"Failed to remove output {output_path}: {e}")

    def _build_summary(self, request: ConversionRequest, metadata: SourceMetadata) -> ConversionSummary:
        return ConversionSummary(
            name=request.file_name,
            output_name=request.output_name,
            download_url=f"{self.download_prefix}/{request.output_name}",
            duration=parse_duration_seconds(metadata.format.duration),
            file_size=metadata.size_bytes,
            resolution=metadata.resolution,
            codec=metadata.codec,
        )

    def convert(self, request: ConversionRequest) -> ConversionResult:
        """Runs one conversion to completion on the calling thread."""
        self._log_state(request, JobState.STARTING)
        try:
            source = self.ffprobe_adapter.probe(request.input_path)
        except ProbeError as e:
            self.logger.error(f"ffprobe error: {e}")
            self._remove_output(request.output_path)
            return self._fail(request, SOURCE_PROBE_FAILED_MESSAGE)

        totals = estimate_totals(source)
        self.logger.info(
            f"Starting conversion of {request.file_name} "
            f"({totals.duration_seconds:.3f}s, {totals.total_frames:.0f} frames) to {request.output_format}"
        )

        # Initial update bypasses the throttle and seeds it.
        self._emit_progress(request.file_name, 0, request.output_name)
        throttle = ProgressThrottle(self.progress_step, last_reported=0)

        try:
            process = self.ffmpeg_adapter.start(request.input_path, request.output_path)
        except LaunchError as e:
            return self._fail(request, str(e))

        entry = self.registry.store(request.file_name, process)
        self._log_state(request, JobState.RUNNING, f"pid={process.pid}")

        stderr = StderrCollector(process.stderr).start()
        reader = threading.Thread(
            target=self._read_progress,
            args=(process.stdout, request, totals, throttle),
            name=f"progress-{request.output_name}",
            daemon=True,
        )
        reader.start()

        returncode = process.wait()
        reader.join()
        stderr.join()
        self._close_pipes(process)
        self.registry.remove(request.file_name)

        if entry.cancelled:
            self.logger.info(f"Conversion of {request.file_name} cancelled (exit {returncode})")
            self._remove_output(request.output_path)
            self._emit_error(request.file_name, CANCELLED_MESSAGE)
            self._log_state(request, JobState.CANCELLED)
            return ConversionResult.cancelled()

        if returncode != 0:
            diagnostic = stderr.text()
            self.logger.error(f"conversion exited with code {returncode}: {diagnostic}")
            message, error_class = classify_failure(diagnostic, request.output_format)
            self._remove_output(request.output_path)
            return self._fail(request, message, error_class)

        try:
            output = self.ffprobe_adapter.probe(request.output_path)
        except ProbeError as e:
            # Transcoding succeeded, so the file stays on disk.
            self.logger.error(f"failed to probe output: {e}")
            return self._fail(request, OUTPUT_PROBE_FAILED_MESSAGE)

        self._log_state(request, JobState.SUCCEEDED)
        return ConversionResult.succeeded(self._build_summary(request, output))

    def _close_pipes(self, process: subprocess.Popen):
        for stream in (process.stdout, process.stderr):
            if stream is not None:
                try:
                    stream.close()
                except OSError:
                    pass

    def cancel(self, file_name: str) -> bool:
        """Requests forceful termination of the conversion for `file_name`.

        The outcome is only logged; the running conversion publishes its own
        terminal event once ffmpeg has gone away.
        """
        if not file_name:
            return False
        self.logger.info(f"cancellation requested for {file_name}")
        _, ok = self.registry.cancel(file_name)
        if not ok:
            self.logger.info(f"no active conversion found for {file_name}")
        return ok
