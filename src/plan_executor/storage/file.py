"""JSON file-backed storage: one file per key, atomically replaced on write."""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any


class JsonFileKeyValueStore:
    """Persist values as JSON documents under a state directory.

    Keys may contain path separators (plan paths), so each key maps to a file
    named by its SHA-256 digest. The document keeps the original key for
    inspection.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self._lock = threading.Lock()

    def migrate(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def get(self, key: str) -> Any | None:
        path = self._path_for(key)
        with self._lock:
            if not path.exists():
                return None
            document = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(document, dict) or document.get("key") != key:
            raise ValueError(f"State file {path.name} does not belong to key {key!r}")
        return document.get("value")

    def set(self, key: str, value: Any) -> None:
        path = self._path_for(key)
        payload = json.dumps({"key": key, "value": value}, ensure_ascii=True, sort_keys=True)
        with self._lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                    handle.flush()
                    os.fsync(handle.fileno())
                # Verify before the old record is replaced.
                if json.loads(Path(tmp_name).read_text(encoding="utf-8")).get("key") != key:
                    raise OSError(f"Verification of state write for {key!r} failed")
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
            self._fsync_directory()

    def delete(self, key: str) -> None:
        with self._lock:
            self._path_for(key).unlink(missing_ok=True)
            self._fsync_directory()

    def _path_for(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]
        return self.directory / f"{digest}.json"

    def _fsync_directory(self) -> None:
        if os.name != "posix" or not self.directory.exists():
            return
        fd = os.open(self.directory, os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
