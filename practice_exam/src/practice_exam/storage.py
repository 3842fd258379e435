"""
Durable key/value storage for client-side exam state.

Values are strings (JSON-encoded by callers), mirroring browser local storage,
so the backing store can be swapped without touching callers.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Minimal get/set/delete store keyed by string."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self) -> Iterator[str]:
        ...

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get_json(self, key: str, default: Any = None) -> Any:
        """Decode a JSON value; undecodable values are logged and treated as missing."""
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"⚠️ [Storage] Ignoring undecodable value for {key!r}: {e}")
            return default

    def set_json(self, key: str, value: Any) -> None:
        self.set(key, json.dumps(value, ensure_ascii=False))


class InMemoryStore(KeyValueStore):
    """Process-local store; contents vanish with the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> Iterator[str]:
        return iter(list(self._data))


class JsonFileStore(KeyValueStore):
    """
    Store persisted as a single JSON object on disk.

    Every write rewrites the file atomically (temp file + rename). A missing
    or corrupt file starts the store empty.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._data: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"⚠️ [Storage] Could not read {self.path}, starting empty: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"⚠️ [Storage] {self.path} does not hold a JSON object, starting empty")
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".store-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._save()

    def delete(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._save()

    def keys(self) -> Iterator[str]:
        return iter(list(self._data))


def open_store(path: Optional[str]) -> KeyValueStore:
    """File-backed store when a path is configured, in-memory otherwise."""
    if path:
        return JsonFileStore(path)
    return InMemoryStore()
