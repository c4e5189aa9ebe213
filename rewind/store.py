"""Persisted key/value stores for small JSON blobs."""
import copy
import json
import logging
import os
from pathlib import Path
from typing import Any
from urllib.parse import quote

from .errors import PersistenceError

logger = logging.getLogger(__name__)


def _encode_segment(segment: str) -> str:
    encoded = quote(segment, safe="")
    if not encoded.strip("."):
        # "." and ".." would walk the directory tree
        encoded = encoded.replace(".", "%2E")
    return encoded


class KeyValueStore:
    """Load/save arbitrary JSON values by key. Keys use '/' as a namespace separator."""

    def load(self, key: str) -> Any:
        raise NotImplementedError

    def save(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    """Process-local store. Values are deep-copied in both directions."""

    def __init__(self):
        self._data: dict[str, Any] = {}

    def load(self, key: str) -> Any:
        if key not in self._data:
            return None
        return copy.deepcopy(self._data[key])

    def save(self, key: str, value: Any) -> None:
        try:
            # Round-trip through JSON so the in-memory store rejects what a file store would.
            self._data[key] = json.loads(json.dumps(value))
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Value for '{key}' is not JSON-serializable: {e}") from e

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class JsonFileStore(KeyValueStore):
    """One JSON file per key under a base directory."""

    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)

    def _path_for(self, key: str) -> Path:
        # Percent-encoding is reversible, so distinct keys never share a file
        parts = [_encode_segment(p) for p in key.split("/")]
        if not all(parts):
            raise PersistenceError(f"Invalid store key: {key!r}")
        return self.base_dir.joinpath(*parts[:-1], parts[-1] + ".json")

    def load(self, key: str) -> Any:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load '{key}' from {path}: {e}")
            raise PersistenceError(f"Failed to load '{key}': {e}") from e

    def save(self, key: str, value: Any) -> None:
        path = self._path_for(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(value, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save '{key}' to {path}: {e}")
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError: pass
            raise PersistenceError(f"Failed to save '{key}': {e}") from e

    def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError(f"Failed to delete '{key}': {e}") from e
