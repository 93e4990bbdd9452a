# votex/storage.py
import json
import logging
import os
import tempfile
import time
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_MISSING = object()


class MemoryBackend:
    """Raw string key-value storage kept in a dict."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JSONFileBackend:
    """
    Raw string key-value storage persisted as one JSON document.

    Values are kept as serialized text, the way browser storage keeps them, so
    a single corrupted value does not take the rest of the file down with it.
    The file is created on first write and always replaced whole, so a crash
    mid-write leaves the previous document in place.
    """

    def __init__(self, path: str):
        self.path = path

    def _read_db(self) -> Dict[str, str]:
        """
        Read the DB file safely.
        If the file is missing, treat it as empty. A corrupted file is moved
        aside before starting empty, so the next write cannot destroy it.
        """
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            self._set_aside(f"unreadable ({e})")
            return {}
        if not isinstance(data, dict):
            self._set_aside("not a key-value document")
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _set_aside(self, reason: str) -> None:
        backup = f"{self.path}.corrupt-{time.strftime('%Y%m%d-%H%M%S')}"
        os.replace(self.path, backup)
        logger.warning(f"Storage file {self.path} is {reason}; moved to {backup}, starting empty")

    def _write_db(self, data: Dict[str, str]) -> None:
        directory = os.path.dirname(self.path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".votex-", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)

    def get(self, key: str) -> Optional[str]:
        return self._read_db().get(key)

    def set(self, key: str, value: str) -> None:
        db = self._read_db()
        db[key] = value
        self._write_db(db)

    def delete(self, key: str) -> None:
        db = self._read_db()
        if key in db:
            del db[key]
            self._write_db(db)


class PersistentStore:
    """
    Typed access to a namespaced key-value backend.

    ``load`` never raises: a stored value that is missing, empty or not valid
    JSON is treated as absent and the legacy key, then the default, is used.
    """

    def __init__(self, backend, namespace: str = "va_"):
        self.backend = backend
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def _decode(self, stored_key: str) -> Any:
        try:
            raw = self.backend.get(stored_key)
        except OSError as e:
            logger.warning(f"Could not read {stored_key}: {e}")
            return _MISSING
        if not raw:
            return _MISSING
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.debug(f"Ignoring malformed value stored under {stored_key}")
            return _MISSING

    def load(self, key: str, default: Any = None, legacy_key: Optional[str] = None) -> Any:
        value = self._decode(self._key(key))
        if value is _MISSING and legacy_key:
            value = self._decode(legacy_key)
        if value is _MISSING or value is None:
            return default
        return value

    def save(self, key: str, value: Any) -> None:
        self.backend.set(self._key(key), json.dumps(value))

    def save_legacy(self, legacy_key: str, value: Any) -> None:
        self.backend.set(legacy_key, json.dumps(value))

    def raw_get(self, key: str, legacy_key: Optional[str] = None) -> Optional[str]:
        value = self.backend.get(self._key(key))
        if not value and legacy_key:
            value = self.backend.get(legacy_key)
        return value or None

    def raw_set(self, key: str, value: str) -> None:
        self.backend.set(self._key(key), value)

    def delete(self, key: str, legacy_key: Optional[str] = None) -> None:
        self.backend.delete(self._key(key))
        if legacy_key:
            self.backend.delete(legacy_key)


def open_store(path: str, namespace: str = "va_") -> PersistentStore:
    return PersistentStore(JSONFileBackend(path), namespace=namespace)
