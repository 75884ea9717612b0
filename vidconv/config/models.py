from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

DEFAULT_MAX_UPLOAD_BYTES = 15 * 1024 * 1024 * 1024  # 15GB
DEFAULT_MAX_PROGRESS_LINE_BYTES = 1024 * 1024


class ServerConfig(BaseModel):
    """HTTP listener and upload settings."""
    host: str = "0.0.0.0"
    port: int = Field(default=3001, ge=1, le=65535)
    downloads_dir: str = "public/downloads"
    frontend_dir: Optional[str] = None  # SPA assets, served at / when set
    max_upload_bytes: int = Field(default=DEFAULT_MAX_UPLOAD_BYTES, gt=0)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    @field_validator("frontend_dir")
    @classmethod
    def empty_frontend_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class ConversionConfig(BaseModel):
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    progress_step: int = Field(default=5, ge=1, le=100)
    max_progress_line_bytes: int = Field(default=DEFAULT_MAX_PROGRESS_LINE_BYTES, ge=1024)


class LoggingConfig(BaseModel):
    log_path: Optional[str] = None
    debug: bool = False


class AppConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    conversion: ConversionConfig = Field(default_factory=ConversionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
