import logging
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

FILE_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(debug: bool = False, log_path: Optional[Path] = None, console: bool = True) -> logging.Logger:
    """
    Setup logging configuration for vidconv.

    Console output goes through rich; a plain-text log file is added when
    log_path is given (its parent directory is created).
    Returns configured logger instance.

    Args:
        debug: If True, enable DEBUG level logging (ffmpeg command lines, job states)
        log_path: Optional path to log file
        console: Attach a RichHandler for terminal output
    """
    level = logging.DEBUG if debug else logging.INFO

    handlers: list = []
    if console:
        handlers.append(RichHandler(rich_tracebacks=True, show_path=False))
    log_file = None
    if log_path:
        log_file = Path(log_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        handlers.append(file_handler)
    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger("vidconv")
    logger.setLevel(level)
    logger.info(f"Logging initialized: {log_file or 'console'} (debug={'ON' if debug else 'OFF'})")

    return logger
