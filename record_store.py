#!/usr/bin/env python3
"""
Durable key -> blob store backed by a directory tree.

Keys are slash-separated paths relative to the store root, for example
``comments/-123/456/post.json``. Parent directories are created on write and
every write replaces the target atomically, so re-writing a record is an
idempotent overwrite.
"""

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, List, Optional, Tuple

from errors import PersistenceError


class FileRecordStore:
    def __init__(self, root):
        self.root = Path(root)
        self._replace_lock = threading.Lock()

    def path_for(self, key: str) -> Path:
        parts = [part for part in key.split("/") if part]
        if not parts or any(part in {".", ".."} for part in parts):
            raise PersistenceError(f"Invalid record key: {key!r}")
        return self.root.joinpath(*parts)

    def _write(self, key: str, data: bytes) -> bool:
        path = self.path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as file:
                    file.write(data)
                with self._replace_lock:
                    created = not path.exists()
                    os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise PersistenceError(f"Failed to write {key}: {exc}") from exc
        return created

    def put_json(self, key: str, value: Any) -> bool:
        """Write a JSON record; returns True when the key did not exist before."""
        data = json.dumps(value, ensure_ascii=False, sort_keys=True).encode("utf-8")
        return self._write(key, data)

    def put_text(self, key: str, text: str) -> bool:
        return self._write(key, text.encode("utf-8"))

    def get_text(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise PersistenceError(f"Failed to read {key}: {exc}") from exc

    def get_json(self, key: str) -> Optional[Any]:
        text = self.get_text(key)
        if text is None:
            return None
        return json.loads(text)

    def list_dir(self, key: str = "") -> List[Tuple[str, bool]]:
        """List ``(name, is_dir)`` entries under a key prefix, sorted by name."""
        path = self.path_for(key) if key else self.root
        if not path.is_dir():
            return []
        try:
            entries = [
                (entry.name, entry.is_dir())
                for entry in path.iterdir()
                if not entry.name.startswith(".")
            ]
        except OSError as exc:
            raise PersistenceError(f"Failed to list {key or '/'}: {exc}") from exc
        return sorted(entries)
