from __future__ import annotations

import json
import logging
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from testdaemon.constants import PROTECTED_COLLECTION_PREFIX
from testdaemon.settings import get_settings

LOGGER = logging.getLogger("testdaemon.storage")

STATE_VERSION = 1


def _default_state() -> Dict[str, Any]:
    return {
        "version": STATE_VERSION,
        "collections": {},
    }


class LocalCollectionStorage:
    """Small document store backed by a JSON file.

    Tests persist fixtures here; each collection maps item ids to documents.
    All writes are synchronised via an internal lock.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._state = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, Any]:
        if not self._path.exists():
            return _default_state()
        with self._path.open("r", encoding="utf-8") as handle:
            state = json.load(handle)
        state.setdefault("version", STATE_VERSION)
        state.setdefault("collections", {})
        return state

    def _persist(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("w", encoding="utf-8") as handle:
            json.dump(self._state, handle, indent=2, sort_keys=True)

    def insert(self, collection: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        record = dict(payload)
        record["id"] = str(payload.get("id") or uuid.uuid4())
        with self._lock:
            self._state["collections"].setdefault(collection, {})[record["id"]] = record
            self._persist()
        return record

    def list_collections(self) -> List[Dict[str, str]]:
        return [{"name": name} for name in sorted(self._state["collections"])]

    def delete_entries(self, name: str) -> int:
        """Remove every document of a collection, keeping the collection itself."""
        with self._lock:
            coll = self._state["collections"].get(name)
            if not coll:
                return 0
            removed = len(coll)
            coll.clear()
            self._persist()
            return removed


class StorageCleaner:
    """Reset persisted test data between runs."""

    def __init__(self, storage: Any, protected_prefix: str = PROTECTED_COLLECTION_PREFIX) -> None:
        self._storage = storage
        self._protected_prefix = protected_prefix

    def clean(self) -> int:
        removed = 0
        for collection in self._storage.list_collections():
            name = collection["name"]
            if name.startswith(self._protected_prefix):
                continue
            count = self._storage.delete_entries(name)
            removed += count or 0
        LOGGER.debug("Storage cleanup removed %s documents", removed)
        return removed


_storage: Optional[LocalCollectionStorage] = None


def get_storage() -> LocalCollectionStorage:
    """Process-wide fixture store used by test files and the post-run cleanup."""
    global _storage
    if _storage is None:
        _storage = LocalCollectionStorage(Path(get_settings().storage_path))
    return _storage
