"""In-memory key/value state (tests, or running without persistence)."""

from __future__ import annotations

import copy
from typing import Any


class MemoryStore:
    def __init__(self):
        self._data: dict[str, Any] = {}

    def get(self, key: str) -> Any:
        # Copies, so callers can't mutate what was persisted.
        return copy.deepcopy(self._data.get(key))

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def keys(self) -> list[str]:
        return list(self._data.keys())
