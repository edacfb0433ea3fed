"""Key-value store interface and in-memory backend."""
import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Durable store of JSON-compatible values."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the stored value or None."""

    @abstractmethod
    def set(self, key: str, value: Any) -> bool:
        """Store a value, returning False on failure."""

    @abstractmethod
    def remove(self, key: str) -> bool:
        """Remove a key, returning False on failure."""

    @abstractmethod
    def clear(self) -> bool:
        """Remove every key, returning False on failure."""


class InMemoryStore(KeyValueStore):
    """Process-local store; values go through a JSON round trip."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> bool:
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.error(f"Value for {key} is not JSON serializable: {e}")
            return False
        with self._lock:
            self._data[key] = raw
        return True

    def remove(self, key: str) -> bool:
        with self._lock:
            self._data.pop(key, None)
        return True

    def clear(self) -> bool:
        with self._lock:
            self._data.clear()
        return True

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
