import logging
import subprocess
import threading
from typing import Dict, List, Optional, Tuple

from vidconv.domain.models import ConversionProcess


class JobRegistry:
    """Lock-guarded table of in-flight conversions keyed by original file name.

    Created once per application and shared between the request threads that
    run conversions and the WebSocket task that delivers cancel requests. The
    lock covers map and flag mutation only; nothing here waits on a process.

    Keying by file name means two concurrent uploads with the same name share
    a slot: the second `store` overwrites the first, which can then no longer
    be cancelled.
    """

    def __init__(self):
        self._conversions: Dict[str, ConversionProcess] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def store(self, key: str, process: Optional[subprocess.Popen]) -> ConversionProcess:
        entry = ConversionProcess(key=key, process=process)
        with self._lock:
            if key in self._conversions:
                self.logger.warning(f"Replacing active conversion entry for {key}")
            self._conversions[key] = entry
        return entry

    def remove(self, key: str) -> None:
        with self._lock:
            self._conversions.pop(key, None)

    def get(self, key: str) -> Optional[ConversionProcess]:
        with self._lock:
            return self._conversions.get(key)

    def active_keys(self) -> List[str]:
        with self._lock:
            return sorted(self._conversions)

    def cancel(self, key: str) -> Tuple[Optional[ConversionProcess], bool]:
        """Kill the conversion registered under `key`.

        Returns (entry, ok). A process that already exited but has not been
        removed yet counts as not cancellable and is left untouched.
        """
        with self._lock:
            entry = self._conversions.get(key)
            if entry is None or entry.process is None:
                return None, False
            if entry.process.poll() is not None:
                self.logger.info(f"Conversion {key} already finished; nothing to cancel")
                return entry, False
            try:
                entry.process.kill()
            except OSError as e:
                self.logger.error(f"Failed to cancel conversion {key}: {e}")
                return entry, False
            entry.cancelled = True
            del self._conversions[key]
            return entry, True
