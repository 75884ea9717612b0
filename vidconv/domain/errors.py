"""Exceptions shared by the adapters and the conversion pipeline."""


class ConversionError(Exception):
    """Base class for failures raised while converting a file."""


class LaunchError(ConversionError):
    """The transcoder executable could not be started."""


class ProbeError(ConversionError):
    """ffprobe failed to run, exited non-zero, or printed unusable output."""


class StreamReadError(ConversionError):
    """The progress stream could not be read; never fatal to a job."""


FFMPEG_NOT_FOUND_MESSAGE = "FFmpeg not found. Please ensure FFmpeg is installed."
LAUNCH_FAILED_MESSAGE = "Failed to start conversion"
