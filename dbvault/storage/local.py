"""Filesystem object store: one file per key plus a JSON metadata sidecar."""

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..errors import StorageMutationError, ValidationError
from ..utils.logging import get_logger
from .base import ObjectStore, StoredObject

logger = get_logger("storage.local")

_SIDECAR_SUFFIX = ".meta.json"


class LocalObjectStore(ObjectStore):
    name = "local"

    def __init__(self, root: str) -> None:
        self._root = Path(root).resolve()

    def _path(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if self._root not in path.parents:
            raise ValidationError(f"Key escapes storage root: {key}")
        return path

    @staticmethod
    def _sidecar(path: Path) -> Path:
        return path.with_name(path.name + _SIDECAR_SUFFIX)

    def _read_object(self, key: str, path: Path, with_body: bool) -> Optional[StoredObject]:
        if not path.is_file():
            return None
        info = {}
        sidecar = self._sidecar(path)
        if sidecar.is_file():
            try:
                info = json.loads(sidecar.read_text(encoding="utf-8"))
            except json.JSONDecodeError:
                logger.warning("local_store_bad_sidecar", key=key)
        stat = path.stat()
        return StoredObject(
            key=key,
            size=stat.st_size,
            uploaded=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            metadata=info.get("metadata", {}),
            content_type=info.get("content_type"),
            body=path.read_bytes() if with_body else None,
        )

    def _put_sync(self, key, content, metadata, content_type) -> StoredObject:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
            self._sidecar(path).write_text(
                json.dumps({"metadata": metadata, "content_type": content_type}),
                encoding="utf-8",
            )
        except OSError as exc:
            raise StorageMutationError(f"Failed to write {key}: {exc}")
        return self._read_object(key, path, with_body=False)

    async def put(self, key, content, metadata, content_type=None) -> StoredObject:
        return await asyncio.to_thread(self._put_sync, key, content, metadata, content_type)

    async def get(self, key: str) -> Optional[StoredObject]:
        return await asyncio.to_thread(self._read_object, key, self._path(key), True)

    async def head(self, key: str) -> Optional[StoredObject]:
        return await asyncio.to_thread(self._read_object, key, self._path(key), False)

    def _delete_sync(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
            self._sidecar(path).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageMutationError(f"Failed to delete {key}: {exc}")

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete_sync, key)

    def _list_sync(self, prefix: str) -> list[StoredObject]:
        if not self._root.is_dir():
            return []
        objects = []
        for path in self._root.rglob("*"):
            if not path.is_file() or path.name.endswith(_SIDECAR_SUFFIX):
                continue
            key = path.relative_to(self._root).as_posix()
            if key.startswith(prefix):
                objects.append(self._read_object(key, path, with_body=False))
        return sorted(objects, key=lambda o: o.key)

    async def list(self, prefix: str) -> list[StoredObject]:
        return await asyncio.to_thread(self._list_sync, prefix)

    async def available(self) -> bool:
        try:
            await asyncio.to_thread(self._root.mkdir, parents=True, exist_ok=True)
        except OSError:
            return False
        return True
