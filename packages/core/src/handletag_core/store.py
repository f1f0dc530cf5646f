"""
Annotation store: handle -> AnnotationRecord.

All operations are awaitable. Callers treat a `get_all()` result as a
snapshot that is only valid for the work they are doing right now.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from handletag_core.errors import StoreUnavailable
from handletag_core.identity import normalize_handle
from handletag_core.records import AnnotationRecord, merge_provenance

logger = logging.getLogger(__name__)


class AnnotationStore(Protocol):
    async def get_all(self) -> dict[str, AnnotationRecord]: ...

    async def upsert(self, key: str, record: AnnotationRecord) -> None: ...

    async def delete(self, key: str) -> bool: ...


class _MappingStore:
    """
    Shared upsert/delete logic over a load/dump pair.

    Subclasses provide `_load()` and `_dump()`; both may raise StoreUnavailable.
    Keys are always lower-cased before access.
    """

    async def _load(self) -> dict[str, AnnotationRecord]:
        raise NotImplementedError

    async def _dump(self, records: dict[str, AnnotationRecord]) -> None:
        raise NotImplementedError

    async def get_all(self) -> dict[str, AnnotationRecord]:
        return dict(await self._load())

    async def get(self, key: str) -> AnnotationRecord | None:
        return (await self._load()).get(normalize_handle(key))

    async def upsert(self, key: str, record: AnnotationRecord) -> None:
        records = await self._load()
        handle = normalize_handle(key)
        records[handle] = merge_provenance(records.get(handle), record)
        await self._dump(records)
        logger.info("Saved tag data for %s", key)

    async def delete(self, key: str) -> bool:
        records = await self._load()
        handle = normalize_handle(key)
        if handle not in records:
            return False
        del records[handle]
        await self._dump(records)
        logger.info("Deleted tag for %s", key)
        return True


class MemoryStore(_MappingStore):
    """In-process store. `available = False` makes every call raise StoreUnavailable."""

    def __init__(self, records: dict[str, AnnotationRecord] | None = None) -> None:
        self._records: dict[str, AnnotationRecord] = {
            normalize_handle(k): v for k, v in (records or {}).items()
        }
        self.available = True

    async def _load(self) -> dict[str, AnnotationRecord]:
        self._check()
        return dict(self._records)

    async def _dump(self, records: dict[str, AnnotationRecord]) -> None:
        self._check()
        self._records = dict(records)

    def _check(self) -> None:
        if not self.available:
            raise StoreUnavailable("memory store is unavailable")


class JsonFileStore(_MappingStore):
    """
    JSON document on disk holding the whole mapping under one storage key:

        {"<storage_key>": {"@alice": {"tag": ..., "color": ..., "url": ..., "notes": ...}}}

    File I/O runs in a worker thread so the event loop is never blocked.
    """

    def __init__(self, path: Path, *, storage_key: str) -> None:
        self.path = path
        self.storage_key = storage_key

    async def _load(self) -> dict[str, AnnotationRecord]:
        return await asyncio.to_thread(self._read)

    async def _dump(self, records: dict[str, AnnotationRecord]) -> None:
        await asyncio.to_thread(self._write, records)

    def _read(self) -> dict[str, AnnotationRecord]:
        if not self.path.exists():
            # Created lazily on first read.
            self._write({})
            return {}
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreUnavailable(f"cannot read {self.path}: {exc}") from exc

        raw = document.get(self.storage_key) if isinstance(document, dict) else None
        if not isinstance(raw, dict):
            return {}

        records: dict[str, AnnotationRecord] = {}
        for key, data in raw.items():
            try:
                records[normalize_handle(key)] = AnnotationRecord.from_storage(data)
            except ValidationError as exc:
                logger.warning("Skipping malformed record for %s: %s", key, exc.errors()[0].get("msg"))
        return records

    def _write(self, records: dict[str, AnnotationRecord]) -> None:
        document: dict[str, Any] = {}
        try:
            if self.path.exists():
                existing = json.loads(self.path.read_text(encoding="utf-8"))
                if isinstance(existing, dict):
                    document = existing
        except json.JSONDecodeError:
            document = {}
        except OSError as exc:
            raise StoreUnavailable(f"cannot read {self.path}: {exc}") from exc

        document[self.storage_key] = {k: v.to_storage() for k, v in sorted(records.items())}
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp_path.replace(self.path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise StoreUnavailable(f"cannot write {self.path}: {exc}") from exc
