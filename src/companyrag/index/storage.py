"""Storage adapters for index artifacts.

Adapters move opaque byte payloads between ``/``-separated paths relative to
a storage root. They know nothing about companies or documents.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path, PurePosixPath
from typing import Any, Iterator, Optional

from .exceptions import ArtifactNotFoundError, StorageError

logger = logging.getLogger(__name__)

TRASH_PREFIX = ".trash-"


def clean_path(path: str) -> str:
    """Normalize a relative storage path, rejecting anything that escapes the root."""
    if not isinstance(path, str):
        raise StorageError(f"Storage path must be a string, got {type(path).__name__}")
    parts = [p for p in PurePosixPath(path.replace("\\", "/")).parts if p not in ("", ".")]
    if path.startswith("/") or any(p == ".." for p in parts):
        raise StorageError(f"Path escapes storage root: {path!r}", path=path)
    return "/".join(parts)


def stamped_name(prefix: str, name: str) -> str:
    """Hidden sibling name that records when it was made.

    ``stamped_name(".staging-", "AAPL")`` gives ``.staging-AAPL-<epoch ms>-<hex>``.
    """
    return f"{prefix}{name}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}"


def stamp_age(entry: str) -> Optional[float]:
    """Seconds since a stamped name was made, or None if it carries no stamp."""
    parts = entry.rsplit("-", 2)
    if len(parts) != 3 or not parts[1].isdigit():
        return None
    return time.time() - int(parts[1]) / 1000


class StorageAdapter(ABC):
    """Abstract base class for artifact storage backends."""

    @abstractmethod
    async def save(self, path: str, data: bytes) -> None:
        """Write a payload, creating intermediate containers.

        Args:
            path: Relative artifact path
            data: Payload bytes
        """
        pass

    @abstractmethod
    async def load(self, path: str) -> bytes:
        """Read a payload.

        Args:
            path: Relative artifact path

        Returns:
            Payload bytes

        Raises:
            ArtifactNotFoundError: If nothing is stored at path
        """
        pass

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Check whether an artifact or container exists at path."""
        pass

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Delete an artifact, or a container and everything below it.

        Raises:
            ArtifactNotFoundError: If nothing is stored at path
        """
        pass

    @abstractmethod
    async def list(self, path: str = "") -> list[str]:
        """List the direct children of a container (sorted names)."""
        pass

    @abstractmethod
    async def move(self, src: str, dst: str) -> None:
        """Replace the container at dst with the container at src.

        Readers observe either the previous dst or the new one, never a mix.
        """
        pass

    @property
    @abstractmethod
    def location(self) -> str:
        """Human-readable description of where data lives."""
        pass


class LocalFileStorage(StorageAdapter):
    """Filesystem storage rooted at a base directory.

    Every artifact write goes to a temp file in the target directory and is
    renamed into place, so a file is either fully written or absent.
    """

    def __init__(self, base_dir: str | Path = "./indexes"):
        """Initialize local storage.

        Args:
            base_dir: Storage root, created if missing
        """
        self.base_dir = Path(base_dir)
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create storage root {self.base_dir}: {e}") from e
        self._root = self.base_dir.resolve()

    @property
    def location(self) -> str:
        return str(self.base_dir)

    def resolve(self, path: str) -> Path:
        """Map a relative storage path to a filesystem path inside the root."""
        relative = clean_path(path)
        full = (self._root / relative).resolve() if relative else self._root
        if full != self._root and self._root not in full.parents:
            raise StorageError(f"Path escapes storage root: {path!r}", path=path)
        return full

    async def _run(self, func, *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def save(self, path: str, data: bytes) -> None:
        await self._run(self._save_sync, path, data)

    def _save_sync(self, path: str, data: bytes) -> None:
        """Synchronous atomic write."""
        target = self.resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, target)
            except BaseException:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
                raise
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}", path=path) from e

    async def load(self, path: str) -> bytes:
        return await self._run(self._load_sync, path)

    def _load_sync(self, path: str) -> bytes:
        """Synchronous read."""
        target = self.resolve(path)
        try:
            return target.read_bytes()
        except (FileNotFoundError, NotADirectoryError):
            raise ArtifactNotFoundError(path)
        except IsADirectoryError as e:
            raise StorageError(f"{path} is a container, not an artifact", path=path) from e
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}", path=path) from e

    async def exists(self, path: str) -> bool:
        return await self._run(self._exists_sync, path)

    def _exists_sync(self, path: str) -> bool:
        return self.resolve(path).exists()

    async def delete(self, path: str) -> None:
        await self._run(self._delete_sync, path)

    def _delete_sync(self, path: str) -> None:
        """Synchronous recursive delete."""
        target = self.resolve(path)
        if target == self._root:
            raise StorageError("Refusing to delete the storage root", path=path)
        try:
            if target.is_dir():
                shutil.rmtree(target)
            else:
                target.unlink()
        except FileNotFoundError:
            raise ArtifactNotFoundError(path)
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}", path=path) from e

    async def list(self, path: str = "") -> list[str]:
        return await self._run(self._list_sync, path)

    def _list_sync(self, path: str) -> list[str]:
        target = self.resolve(path)
        if not target.exists():
            return []
        try:
            return sorted(entry.name for entry in target.iterdir())
        except NotADirectoryError:
            return []
        except OSError as e:
            raise StorageError(f"Failed to list {path or '.'}: {e}", path=path) from e

    async def move(self, src: str, dst: str) -> None:
        await self._run(self._move_sync, src, dst)

    def _move_sync(self, src: str, dst: str) -> None:
        """Swap src into dst; the previous dst is renamed aside, then removed."""
        source = self.resolve(src)
        target = self.resolve(dst)
        if not source.exists():
            raise ArtifactNotFoundError(src)

        trash = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if target.exists():
                trash = target.with_name(stamped_name(TRASH_PREFIX, target.name))
                os.replace(target, trash)
            os.replace(source, target)
        except OSError as e:
            if trash is not None and not target.exists():
                os.replace(trash, target)
                trash = None
            raise StorageError(f"Failed to move {src} to {dst}: {e}", path=dst) from e

        if trash is not None:
            shutil.rmtree(trash, ignore_errors=True)


class MemoryStorage(StorageAdapter):
    """In-memory storage for testing."""

    def __init__(self, name: str = "memory"):
        self._name = name
        self._files: dict[str, bytes] = {}

    @property
    def location(self) -> str:
        return f"memory://{self._name}"

    def _children(self, prefix: str) -> list[str]:
        return [key for key in self._files if key.startswith(prefix)]

    async def save(self, path: str, data: bytes) -> None:
        key = clean_path(path)
        if not key:
            raise StorageError("Cannot save to the storage root", path=path)
        if not isinstance(data, (bytes, bytearray)):
            raise StorageError(f"Payload for {path} must be bytes", path=path)
        self._files[key] = bytes(data)

    async def load(self, path: str) -> bytes:
        key = clean_path(path)
        if key not in self._files:
            raise ArtifactNotFoundError(path)
        return self._files[key]

    async def exists(self, path: str) -> bool:
        key = clean_path(path)
        if not key:
            return True
        return key in self._files or bool(self._children(key + "/"))

    async def delete(self, path: str) -> None:
        key = clean_path(path)
        if not key:
            raise StorageError("Refusing to delete the storage root", path=path)
        removed = self._files.pop(key, None) is not None
        for child in self._children(key + "/"):
            del self._files[child]
            removed = True
        if not removed:
            raise ArtifactNotFoundError(path)

    async def list(self, path: str = "") -> list[str]:
        key = clean_path(path)
        prefix = key + "/" if key else ""
        names = {k[len(prefix):].split("/", 1)[0] for k in self._children(prefix)}
        return sorted(names)

    async def move(self, src: str, dst: str) -> None:
        src_key, dst_key = clean_path(src), clean_path(dst)
        moved = {k[len(src_key):]: v for k, v in self._files.items() if k.startswith(src_key + "/")}
        if not moved:
            raise ArtifactNotFoundError(src)
        for child in self._children(src_key + "/") + self._children(dst_key + "/"):
            self._files.pop(child, None)
        for suffix, data in moved.items():
            self._files[dst_key + suffix] = data

    def clear(self) -> int:
        """Drop everything. Returns the number of artifacts removed."""
        count = len(self._files)
        self._files.clear()
        return count


class RedisStorage(StorageAdapter):
    """Redis-based artifact storage.

    Each artifact is a string key under ``key_prefix``; a container is the set
    of keys sharing its path prefix. Moves run as one MULTI/EXEC transaction.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "companyrag:",
        client: Any = None,
    ):
        """Initialize Redis storage.

        Args:
            redis_url: Redis connection URL
            key_prefix: Key prefix for all artifacts
            client: Existing redis.asyncio client; one is created from
                redis_url on first use otherwise
        """
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._client = client

    @property
    def location(self) -> str:
        return f"{self.redis_url}/{self.key_prefix}"

    def _get_client(self):
        """Get or create Redis client."""
        if self._client is None:
            try:
                import redis.asyncio as redis
                self._client = redis.from_url(self.redis_url)
            except ImportError:
                raise ImportError(
                    "Redis storage requires 'redis'. "
                    "Install it with: pip install redis"
                )
        return self._client

    def _get_key(self, path: str) -> str:
        return f"{self.key_prefix}{clean_path(path)}"

    @contextmanager
    def _translate(self, action: str, path: str) -> Iterator[None]:
        """Re-raise client and connection failures as StorageError."""
        self._get_client()
        from redis.exceptions import RedisError
        try:
            yield
        except (RedisError, OSError) as e:
            raise StorageError(f"Failed to {action} {path or '.'}: {e}", path=path) from e

    async def _scan(self, pattern: str) -> list[str]:
        keys = []
        async for key in self._get_client().scan_iter(match=pattern):
            keys.append(key.decode() if isinstance(key, bytes) else key)
        return keys

    async def _keys_under(self, path: str) -> list[str]:
        return await self._scan(f"{self._get_key(path)}/*")

    async def save(self, path: str, data: bytes) -> None:
        with self._translate("write", path):
            await self._get_client().set(self._get_key(path), data)

    async def load(self, path: str) -> bytes:
        with self._translate("read", path):
            data = await self._get_client().get(self._get_key(path))
        if data is None:
            raise ArtifactNotFoundError(path)
        return data

    async def exists(self, path: str) -> bool:
        with self._translate("check", path):
            if await self._get_client().exists(self._get_key(path)):
                return True
            return bool(await self._keys_under(path))

    async def delete(self, path: str) -> None:
        if not clean_path(path):
            raise StorageError("Refusing to delete the storage root", path=path)
        with self._translate("delete", path):
            client = self._get_client()
            keys = await self._keys_under(path)
            if await client.exists(self._get_key(path)):
                keys.append(self._get_key(path))
            if keys:
                await client.delete(*keys)
        if not keys:
            raise ArtifactNotFoundError(path)

    async def list(self, path: str = "") -> list[str]:
        base = self._get_key(path)
        prefix = base + "/" if clean_path(path) else base
        with self._translate("list", path):
            keys = await self._scan(f"{prefix}*")
        return sorted({key[len(prefix):].split("/", 1)[0] for key in keys})

    async def move(self, src: str, dst: str) -> None:
        src_base, dst_base = self._get_key(src), self._get_key(dst)
        with self._translate("move", src):
            src_keys = await self._keys_under(src)
            if not src_keys:
                raise ArtifactNotFoundError(src)
            dst_keys = await self._keys_under(dst)

            async with self._get_client().pipeline(transaction=True) as pipe:
                if dst_keys:
                    pipe.delete(*dst_keys)
                for key in src_keys:
                    pipe.rename(key, dst_base + key[len(src_base):])
                await pipe.execute()
