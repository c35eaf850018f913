from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class JsonFileStorage:
    """
    Durable key/value storage backed by one JSON document on disk.

    Every value is JSON-serialized under its key. Writes go through a
    temporary file and ``os.replace`` so a reader never sees half a file.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, Any]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.warning("Session storage unreadable at %s: %s", self.path, exc)
            return {}
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Session storage at %s is not valid JSON: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Session storage at %s has an unexpected shape", self.path)
            return {}
        return data

    def _write_all(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            prefix=f".{self.path.name}.",
            dir=str(self.path.parent),
            delete=False,
        ) as tmp_file:
            tmp_name = tmp_file.name
            json.dump(data, tmp_file, indent=2, sort_keys=True)
        try:
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def get_item(self, name: str) -> Optional[Any]:
        with self._lock:
            return self._read_all().get(name)

    def set_item(self, name: str, value: Any) -> None:
        with self._lock:
            data = self._read_all()
            data[name] = value
            self._write_all(data)

    def remove_item(self, name: str) -> None:
        with self._lock:
            data = self._read_all()
            if name not in data:
                return
            data.pop(name)
            self._write_all(data)
