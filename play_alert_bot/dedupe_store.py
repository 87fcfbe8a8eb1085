from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional, Protocol

log = logging.getLogger("dedupe")


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    def set(self, key: str, value: Dict[str, Any]) -> None: ...


class MemoryStore:
    """In-process store; state lives as long as the object."""

    def __init__(self, initial: Optional[Dict[str, Dict[str, Any]]] = None) -> None:
        self._data: Dict[str, Dict[str, Any]] = dict(initial or {})
        self.writes = 0

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        val = self._data.get(key)
        return json.loads(json.dumps(val)) if val is not None else None

    def set(self, key: str, value: Dict[str, Any]) -> None:
        self._data[key] = json.loads(json.dumps(value))
        self.writes += 1


class JsonFileStore:
    """One JSON document per store; keys are top-level entries.

    An unreadable or corrupt file reads as empty so a fresh runner starts clean.
    """

    def __init__(self, path: str) -> None:
        self.path = path

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            log.warning("cache_read_failed path=%s err=%s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        return self._load().get(key)

    def set(self, key: str, value: Dict[str, Any]) -> None:
        data = self._load()
        data[key] = value
        tmp = self.path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp, self.path)
