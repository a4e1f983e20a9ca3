"""Lock-protected string interning for call-tree method names."""

from __future__ import annotations

from threading import Lock
from typing import Dict


class StringInterner:
    """Map string content to one shared instance.

    Two calls with equal content return the *same* object, so callers may
    compare handles with ``is``. Entries are never evicted; the method-name
    vocabulary is small next to the number of frames that reference it.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._pool: Dict[str, str] = {}

    def intern(self, value: str) -> str:
        with self._lock:
            shared = self._pool.get(value)
            if shared is None:
                shared = value
                self._pool[shared] = shared
            return shared

    def __len__(self) -> int:
        with self._lock:
            return len(self._pool)

    def __contains__(self, value: object) -> bool:
        with self._lock:
            return value in self._pool
