import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from vidconv.config.models import AppConfig

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnvOverrides:
    """Deployment overrides read from the process environment.

    PORT, DOWNLOADS_DIR and FRONTEND_DIST keep the names container images
    already set for this service.
    """
    port: Optional[int] = None
    downloads_dir: Optional[str] = None
    frontend_dir: Optional[str] = None

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> "EnvOverrides":
        env = os.environ if environ is None else environ
        port = None
        raw_port = env.get("PORT")
        if raw_port:
            try:
                port = int(raw_port)
            except ValueError:
                _logger.warning("Ignoring non-numeric PORT=%r", raw_port)
        return cls(
            port=port,
            downloads_dir=env.get("DOWNLOADS_DIR") or None,
            frontend_dir=env.get("FRONTEND_DIST") or None,
        )

    def apply(self, config: AppConfig) -> None:
        if self.port is not None:
            config.server.port = self.port
        if self.downloads_dir is not None:
            config.server.downloads_dir = self.downloads_dir
        if self.frontend_dir is not None:
            config.server.frontend_dir = self.frontend_dir


@dataclass(frozen=True)
class CliOverrides:
    host: Optional[str] = None
    port: Optional[int] = None
    downloads_dir: Optional[str] = None
    frontend_dir: Optional[str] = None
    ffmpeg_path: Optional[str] = None
    ffprobe_path: Optional[str] = None
    log_path: Optional[str] = None
    debug: bool = False

    def apply(self, config: AppConfig) -> None:
        if self.host is not None:
            config.server.host = self.host
        if self.port is not None:
            config.server.port = self.port
        if self.downloads_dir is not None:
            config.server.downloads_dir = self.downloads_dir
        if self.frontend_dir is not None:
            config.server.frontend_dir = self.frontend_dir
        if self.ffmpeg_path is not None:
            config.conversion.ffmpeg_path = self.ffmpeg_path
        if self.ffprobe_path is not None:
            config.conversion.ffprobe_path = self.ffprobe_path
        if self.log_path is not None:
            config.logging.log_path = str(self.log_path)
        if self.debug:
            config.logging.debug = True
