"""JSON-file specification store.

Layout under the store root::

    <root>/<document_id>.json             {"specification": ..., "metadata": ...}
    <root>/snapshots/<document_id>.json   {"specification": ..., "metadata": ...}

Snapshots are written after each completed stage and never replace the
stored document. Writes go through a temp file that is flushed, fsynced and
renamed into place, so readers never observe a partial document.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any

from src.core.errors import StoreError
from src.core.models import Specification
from src.core.protocols import FINAL_KIND, SNAPSHOT_KIND

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def _atomic_write_json(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(payload, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _read_json(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    with open(path) as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object in {path}")
    return data


class FileSpecificationStore:
    """SpecificationStore backed by one JSON file per document.

    Writes are serialized per document id with an ``asyncio.Lock``; the
    blocking file I/O runs in a worker thread.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, document_id: str) -> asyncio.Lock:
        lock = self._locks.get(document_id)
        if lock is None:
            lock = self._locks[document_id] = asyncio.Lock()
        return lock

    def _check_id(self, document_id: str) -> None:
        if not _SAFE_ID.match(document_id):
            raise StoreError(f"Invalid document id: {document_id!r}")

    def document_path(self, document_id: str) -> Path:
        self._check_id(document_id)
        return self.root / f"{document_id}.json"

    def snapshot_path(self, document_id: str) -> Path:
        self._check_id(document_id)
        return self.root / "snapshots" / f"{document_id}.json"

    async def get(self, document_id: str) -> Specification | None:
        path = self.document_path(document_id)
        try:
            data = await asyncio.to_thread(_read_json, path)
        except (OSError, ValueError) as e:
            raise StoreError(f"Cannot read document '{document_id}': {e}") from e
        if data is None:
            return None
        spec = data.get("specification")
        if not isinstance(spec, dict):
            raise StoreError(f"Document '{document_id}' has no specification")
        return Specification.from_dict(spec)

    async def save(
        self,
        document_id: str,
        specification: Specification,
        metadata: dict[str, Any],
    ) -> None:
        kind = metadata.get("kind", FINAL_KIND)
        path = (
            self.snapshot_path(document_id)
            if kind == SNAPSHOT_KIND
            else self.document_path(document_id)
        )
        payload = {"specification": specification.to_dict(), "metadata": metadata}
        async with self._lock(document_id):
            try:
                await asyncio.to_thread(_atomic_write_json, path, payload)
            except (OSError, TypeError, ValueError) as e:
                raise StoreError(f"Cannot write document '{document_id}': {e}") from e
        logger.debug("Saved %s for %s to %s", kind, document_id, path)

    async def load_snapshot(self, document_id: str) -> dict[str, Any] | None:
        path = self.snapshot_path(document_id)
        try:
            data = await asyncio.to_thread(_read_json, path)
        except (OSError, ValueError) as e:
            raise StoreError(f"Cannot read snapshot '{document_id}': {e}") from e
        if data is None:
            return None
        metadata = data.get("metadata")
        return metadata if isinstance(metadata, dict) else None

