# core/reading_store.py
import threading
import time
from typing import Any, Dict, Iterable, Optional, Tuple


class ReadingStore:
    """
    Committed readings of one device, with the time each reading was last written.

    Plugins commit a whole ReadingSet at once at the end of a poll cycle; readers
    (data processor, MQTT, tests) only ever see complete commits. All methods are
    thread-safe.
    """
    def __init__(self, clock=time.time):
        self._clock = clock
        self._lock = threading.RLock()
        self._values: Dict[str, Any] = {}
        self._timestamps: Dict[str, float] = {}

    def commit(self, readings: Dict[str, Any], keep_only: Optional[Iterable[str]] = None,
               replace_prefixes: Tuple[str, ...] = ()) -> Dict[str, Any]:
        """
        Writes a batch of readings.

        Args:
            readings: Reading name -> value. ``None`` values are skipped.
            keep_only: If given, every stored reading whose name is not in this
                collection and not in ``readings`` is deleted before writing.
            replace_prefixes: Stored readings whose name starts with one of these
                prefixes and that ``readings`` does not contain are deleted, so
                the batch replaces that whole group.

        Returns:
            A snapshot of all readings after the commit.
        """
        now = self._clock()
        with self._lock:
            if keep_only is not None:
                self._delete_except(set(keep_only))
            if replace_prefixes:
                stale = [k for k in self._values
                         if k.startswith(tuple(replace_prefixes)) and readings.get(k) is None]
                for key in stale:
                    del self._values[key]
                    self._timestamps.pop(key, None)
            for key, value in readings.items():
                if value is None:
                    continue
                self._values[key] = value
                self._timestamps[key] = now
            return dict(self._values)

    def delete_except(self, protected: Iterable[str]) -> None:
        with self._lock:
            self._delete_except(set(protected))

    def _delete_except(self, protected: set) -> None:
        for key in [k for k in self._values if k not in protected]:
            del self._values[key]
            self._timestamps.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._values.clear()
            self._timestamps.clear()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(key, default)

    def age(self, key: str, default: float) -> float:
        """Seconds since ``key`` was last written, or ``default`` if it is not stored."""
        with self._lock:
            written = self._timestamps.get(key)
        if written is None:
            return default
        return max(0.0, self._clock() - written)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._values)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._values

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)
