"""
Path-addressed durable storage used by the presentation cache and the
overlay store.

Paths are relative, slash separated and always resolved under the storage
root. Every OSError surfaces as StorageUnavailable.
"""

import shutil
import logging
from pathlib import Path
from typing import List, Protocol, runtime_checkable

from .exceptions import StorageUnavailable

logger = logging.getLogger(__name__)


@runtime_checkable
class DurableStorage(Protocol):
    """Hierarchical store the cache and overlay layers persist through"""

    async def ensure_dir(self, path: str) -> None: ...

    async def write_text(self, path: str, text: str) -> None: ...

    async def write_bytes(self, path: str, data: bytes) -> None: ...

    async def read_text(self, path: str) -> str: ...

    async def list_entries(self, path: str = "") -> List[str]: ...

    async def delete_recursive(self, path: str) -> bool: ...

    async def exists(self, path: str) -> bool: ...

    def locate(self, path: str) -> str: ...


class LocalFileStorage:
    """DurableStorage backed by a directory on the local filesystem"""

    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve() if path else self.root
        if target != self.root and self.root not in target.parents:
            raise ValueError(f"Path escapes storage root: {path!r}")
        return target

    def locate(self, path: str) -> str:
        """Absolute local path for a stored entry"""
        return str(self._resolve(path))

    async def ensure_dir(self, path: str) -> None:
        try:
            self._resolve(path).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Cannot create directory {path!r}", cause=e)

    async def write_text(self, path: str, text: str) -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            # write then rename so readers never see a half-written file
            tmp = target.with_name(target.name + ".tmp")
            tmp.write_text(text, encoding="utf-8")
            tmp.replace(target)
        except OSError as e:
            raise StorageUnavailable(f"Cannot write {path!r}", cause=e)

    async def write_bytes(self, path: str, data: bytes) -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise StorageUnavailable(f"Cannot write {path!r}", cause=e)

    async def read_text(self, path: str) -> str:
        try:
            return self._resolve(path).read_text(encoding="utf-8")
        except OSError as e:
            raise StorageUnavailable(f"Cannot read {path!r}", cause=e)

    async def list_entries(self, path: str = "") -> List[str]:
        target = self._resolve(path)
        if not target.exists():
            return []
        try:
            return sorted(entry.name for entry in target.iterdir())
        except OSError as e:
            raise StorageUnavailable(f"Cannot list {path!r}", cause=e)

    async def delete_recursive(self, path: str) -> bool:
        target = self._resolve(path)
        if not target.exists():
            return False
        try:
            if target.is_dir():
                shutil.rmtree(target)
            else:
                target.unlink()
        except OSError as e:
            raise StorageUnavailable(f"Cannot delete {path!r}", cause=e)

        logger.debug(f"Deleted {target}")
        return True

    async def exists(self, path: str) -> bool:
        try:
            return self._resolve(path).exists()
        except OSError as e:
            raise StorageUnavailable(f"Cannot stat {path!r}", cause=e)
