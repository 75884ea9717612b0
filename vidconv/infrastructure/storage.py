import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Tuple

from vidconv.domain.models import ConversionRequest

_COPY_CHUNK = 1024 * 1024


class UploadTooLarge(Exception):
    def __init__(self, limit: int):
        super().__init__(f"File too large. Maximum size allowed is {limit} bytes")
        self.limit = limit


def sanitize_filename(name: str) -> str:
    """Basename only, no '..' sequences, spaces replaced with underscores."""
    name = os.path.basename(name.replace("\\", "/"))
    name = name.replace("..", "")
    return name.replace(" ", "_")


class DownloadsStore:
    """The shared directory holding uploads in flight and converted outputs.

    Each job only touches files carrying its own fresh UUID, so no locking is
    needed between concurrent conversions.
    """

    def __init__(self, root: Path, url_prefix: str = "/downloads"):
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")
        self.logger = logging.getLogger(__name__)

    def ensure(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def save_upload(self, source: BinaryIO, file_name: str, max_bytes: Optional[int] = None, prefix: str = "") -> Path:
        """Streams `source` to a uniquely named file; removes it if the limit is exceeded."""
        self.ensure()
        target = self.root / f"{prefix}{uuid.uuid4()}-{sanitize_filename(file_name)}"
        written = 0
        try:
            with open(target, "wb") as buffer:
                while True:
                    chunk = source.read(_COPY_CHUNK)
                    if not chunk:
                        break
                    written += len(chunk)
                    if max_bytes is not None and written > max_bytes:
                        raise UploadTooLarge(max_bytes)
                    buffer.write(chunk)
        except BaseException:
            self.discard(target)
            raise
        return target

    def new_output(self, output_format: str) -> Tuple[str, Path]:
        name = f"{uuid.uuid4()}.{sanitize_filename(output_format)}"
        return name, self.root / name

    def prepare_request(self, input_path: Path, file_name: str, output_format: str) -> ConversionRequest:
        output_name, output_path = self.new_output(output_format)
        return ConversionRequest(
            input_path=input_path,
            file_name=file_name,
            output_format=output_format,
            output_name=output_name,
            output_path=output_path,
        )

    def download_url(self, name: str) -> str:
        return f"{self.url_prefix}/{name}"

    def discard(self, path: Path) -> None:
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            self.logger.warning(f"Failed to remove {path}: {e}")

    def list_files(self) -> List[Dict[str, str]]:
        """Regular files in the directory, sorted by name, with mtime in RFC 3339 UTC."""
        files = []
        with os.scandir(self.root) as it:
            entries = sorted(it, key=lambda e: e.name)
        for entry in entries:
            if entry.is_dir():
                continue
            try:
                created = datetime.fromtimestamp(entry.stat().st_mtime, tz=timezone.utc)
            except OSError:
                created = datetime.now(timezone.utc)
            files.append({
                "name": entry.name,
                "downloadUrl": self.download_url(entry.name),
                "createdAt": created.replace(microsecond=0).isoformat().replace("+00:00", "Z"),
            })
        return files
