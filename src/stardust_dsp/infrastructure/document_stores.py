"""Document store adapters: process-local dictionaries and a JSON-file variant."""

from __future__ import annotations

import copy
import json
import logging
import threading
import uuid
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

from stardust_dsp.application.ports import BATCH_WRITE_LIMIT, ArrayUnion, Filter, Increment, StoredDocument
from stardust_dsp.errors import DocumentNotFoundError, StardustError

LOGGER = logging.getLogger(__name__)

_MISSING = object()


def _apply_value(current: Any, value: Any) -> Any:
    """Resolve a written value against what is stored, honouring field transforms."""

    if isinstance(value, Increment):
        base = current if isinstance(current, (int, float)) and not isinstance(current, bool) else 0
        return base + value.amount
    if isinstance(value, ArrayUnion):
        merged = list(current) if isinstance(current, list) else []
        for item in value.values:
            if item not in merged:
                merged.append(item)
        return merged
    if isinstance(value, Mapping):
        return {key: _apply_value(None, item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_apply_value(None, item) for item in value]
    return copy.deepcopy(value)


def _deep_merge(target: dict[str, Any], document: Mapping[str, Any]) -> None:
    for key, value in document.items():
        existing = target.get(key)
        if isinstance(value, Mapping) and isinstance(existing, dict):
            _deep_merge(existing, value)
        else:
            target[key] = _apply_value(existing, value)


def _set_path(document: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    node = document
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = node[part] = {}
        node = child
    node[parts[-1]] = _apply_value(node.get(parts[-1]), value)


def _lookup(document: Mapping[str, Any], path: str) -> Any:
    node: Any = document
    for part in path.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return _MISSING
        node = node[part]
    return node


def _matches(document: Mapping[str, Any], condition: Filter) -> bool:
    value = _lookup(document, condition.field)
    if condition.op == "==":
        return (None if value is _MISSING else value) == condition.value
    if value is _MISSING or value is None:
        return False
    if condition.op == "!=":
        return value != condition.value
    if condition.op == "in":
        return value in condition.value
    try:
        if condition.op == "<":
            return value < condition.value
        if condition.op == "<=":
            return value <= condition.value
        if condition.op == ">":
            return value > condition.value
        return value >= condition.value
    except TypeError:
        return False


class InMemoryWriteBatch:
    """Buffered writes applied atomically on ``commit``; capped at the store's batch limit."""

    def __init__(self, store: "InMemoryDocumentStore", limit: int = BATCH_WRITE_LIMIT) -> None:
        self._store = store
        self._limit = limit
        self._operations: list[Callable[[], None]] = []

    def _queue(self, operation: Callable[[], None]) -> None:
        if len(self._operations) >= self._limit:
            raise StardustError(f"write batch exceeds {self._limit} operations")
        self._operations.append(operation)

    def set(self, collection: str, key: str, document: Mapping[str, Any], *, merge: bool = False) -> None:
        self._queue(lambda: self._store._set(collection, key, document, merge))

    def update(self, collection: str, key: str, fields: Mapping[str, Any]) -> None:
        self._queue(lambda: self._store._update(collection, key, fields))

    def delete(self, collection: str, key: str) -> None:
        self._queue(lambda: self._store._delete(collection, key))

    def commit(self) -> int:
        """Apply every buffered write, or none of them if one fails."""

        operations, self._operations = self._operations, []
        with self._store._lock:
            snapshot = copy.deepcopy(self._store._collections)
            try:
                for operation in operations:
                    operation()
            except Exception:
                self._store._collections = snapshot
                raise
            self._store._persist()
        return len(operations)


class InMemoryDocumentStore:
    """Thread-safe collection -> key -> document mapping with field transforms."""

    def __init__(self, collections: dict[str, dict[str, dict[str, Any]]] | None = None) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = collections or {}
        self._lock = threading.RLock()

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        with self._lock:
            document = self._collections.get(collection, {}).get(key)
            return copy.deepcopy(document) if document is not None else None

    def set(self, collection: str, key: str, document: Mapping[str, Any], *, merge: bool = False) -> None:
        with self._lock:
            self._set(collection, key, document, merge)
            self._persist()

    def update(self, collection: str, key: str, fields: Mapping[str, Any]) -> None:
        with self._lock:
            self._update(collection, key, fields)
            self._persist()

    def add(self, collection: str, document: Mapping[str, Any]) -> str:
        key = uuid.uuid4().hex
        self.set(collection, key, document)
        return key

    def delete(self, collection: str, key: str) -> None:
        with self._lock:
            self._delete(collection, key)
            self._persist()

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[StoredDocument]:
        with self._lock:
            items = [
                StoredDocument(key, copy.deepcopy(document))
                for key, document in self._collections.get(collection, {}).items()
                if all(_matches(document, condition) for condition in filters)
            ]
        if order_by:
            def sort_key(item: StoredDocument) -> tuple[bool, Any]:
                value = _lookup(item.data, order_by)
                missing = value is _MISSING or value is None
                return (missing, None if missing else value)

            items.sort(key=sort_key, reverse=descending)
        if limit is not None:
            items = items[:limit]
        return items

    def batch(self) -> InMemoryWriteBatch:
        return InMemoryWriteBatch(self)

    def collections(self) -> list[str]:
        with self._lock:
            return sorted(self._collections)

    def _set(self, collection: str, key: str, document: Mapping[str, Any], merge: bool) -> None:
        documents = self._collections.setdefault(collection, {})
        existing = documents.get(key)
        if merge and existing is not None:
            _deep_merge(existing, document)
        else:
            documents[key] = _apply_value(None, document)

    def _update(self, collection: str, key: str, fields: Mapping[str, Any]) -> None:
        document = self._collections.get(collection, {}).get(key)
        if document is None:
            raise DocumentNotFoundError(collection, key)
        for path, value in fields.items():
            _set_path(document, path, value)

    def _delete(self, collection: str, key: str) -> None:
        self._collections.get(collection, {}).pop(key, None)

    def _persist(self) -> None:
        return


class JsonFileDocumentStore(InMemoryDocumentStore):
    """In-memory store mirrored to one JSON file after every write."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        collections: dict[str, dict[str, dict[str, Any]]] = {}
        if self.path.exists():
            collections = json.loads(self.path.read_text(encoding="utf-8") or "{}")
            LOGGER.debug("document_store_loaded", extra={"path": str(self.path)})
        super().__init__(collections)

    def _persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        staging = self.path.with_suffix(self.path.suffix + ".tmp")
        staging.write_text(json.dumps(self._collections, indent=2, sort_keys=True, default=str), encoding="utf-8")
        staging.replace(self.path)
