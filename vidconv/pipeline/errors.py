"""User-facing failure messages and ffmpeg failure classification."""

from dataclasses import dataclass
from typing import Tuple

from vidconv.domain.models import ErrorClass

SOURCE_PROBE_FAILED_MESSAGE = "Failed to analyze source file"
OUTPUT_PROBE_FAILED_MESSAGE = "Conversion completed but metadata lookup failed"
GENERIC_FAILURE_MESSAGE = "Conversion failed"


@dataclass(frozen=True)
class FailureRule:
    substring: str
    error_class: ErrorClass
    message_template: str

    def matches(self, stderr: str) -> bool:
        return self.substring in stderr

    def render(self, output_format: str) -> str:
        return self.message_template.format(format=output_format)


# First match wins; the version banner is last because every stderr has it.
FAILURE_RULES: Tuple[FailureRule, ...] = (
    FailureRule("Unknown encoder", ErrorClass.CLIENT, "Unsupported output format: {format}"),
    FailureRule("Invalid data found", ErrorClass.CLIENT, "Invalid or corrupted video file"),
    FailureRule("No space left", ErrorClass.SERVER, "Server storage full. Please try again later."),
    FailureRule("ffmpeg version", ErrorClass.SERVER, GENERIC_FAILURE_MESSAGE),
)


def classify_failure(stderr: str, output_format: str) -> Tuple[str, ErrorClass]:
    """Turn captured ffmpeg stderr into a user-facing message and error class."""
    for rule in FAILURE_RULES:
        if rule.matches(stderr):
            return rule.render(output_format), rule.error_class
    if stderr:
        return stderr, ErrorClass.SERVER
    return GENERIC_FAILURE_MESSAGE, ErrorClass.SERVER
