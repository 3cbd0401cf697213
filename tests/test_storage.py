"""Tests for storage adapters."""

import fnmatch
import typing

import pytest
from redis.exceptions import ConnectionError, ResponseError

from companyrag.index import (
    IndexManager,
    LocalFileStorage,
    MemoryStorage,
    RedisStorage,
    StorageAdapter,
    StorageError,
)
from companyrag.index.exceptions import ArtifactNotFoundError
from companyrag.index.storage import clean_path


class StubRedis:
    """In-process stand-in for a redis.asyncio client, string keys only."""

    def __init__(self):
        self.data: dict[str, bytes] = {}
        self.fail_execute = False

    async def set(self, key, value):
        self.data[key] = bytes(value)
        return True

    async def get(self, key):
        return self.data.get(key)

    async def exists(self, *keys):
        return sum(1 for key in keys if key in self.data)

    async def delete(self, *keys):
        return sum(1 for key in keys if self.data.pop(key, None) is not None)

    async def scan_iter(self, match="*"):
        for key in list(self.data):
            if fnmatch.fnmatchcase(key, match):
                yield key.encode()

    def pipeline(self, transaction=True):
        return StubRedisPipeline(self)


class StubRedisPipeline:
    """Queues commands and applies them all at once on execute()."""

    def __init__(self, client):
        self.client = client
        self.commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.commands.clear()

    def delete(self, *keys):
        self.commands.append(("delete", keys))
        return self

    def rename(self, src, dst):
        self.commands.append(("rename", (src, dst)))
        return self

    async def execute(self):
        if self.client.fail_execute:
            raise ConnectionError("Connection reset by peer")
        data = dict(self.client.data)
        for name, args in self.commands:
            if name == "delete":
                for key in args:
                    data.pop(key, None)
            else:
                src, dst = args
                if src not in data:
                    raise ResponseError("no such key")
                data[dst] = data.pop(src)
        self.client.data = data
        return [True] * len(self.commands)


@pytest.fixture(params=["local", "memory", "redis"])
def storage(request, tmp_path):
    """Each adapter must behave the same."""
    if request.param == "local":
        return LocalFileStorage(tmp_path / "store")
    if request.param == "redis":
        return RedisStorage(client=StubRedis())
    return MemoryStorage()


class TestCleanPath:
    """Tests for relative path normalization."""

    def test_normalizes(self):
        """Test separators and dot segments."""
        assert clean_path("a//b/./c") == "a/b/c"
        assert clean_path("a\\b") == "a/b"
        assert clean_path("") == ""

    @pytest.mark.parametrize("path", ["/etc/passwd", "../outside", "a/../../b"])
    def test_rejects_escapes(self, path):
        """Test that paths leaving the root are refused."""
        with pytest.raises(StorageError):
            clean_path(path)


class TestAnnotations:
    """Adapters define a method named list; annotations must still mean the builtin."""

    @pytest.mark.parametrize("adapter", [StorageAdapter, LocalFileStorage, MemoryStorage, RedisStorage])
    def test_annotations_resolve(self, adapter):
        """Test that every method's annotations evaluate."""
        for member in vars(adapter).values():
            if callable(member):
                typing.get_type_hints(member)
        assert typing.get_type_hints(adapter.list)["return"] == list[str]


class TestStorageAdapters:
    """Behaviour shared by every adapter."""

    @pytest.mark.asyncio
    async def test_save_and_load(self, storage):
        """Test writing and reading a payload."""
        await storage.save("AAPL/metadata.json", b'{"a": 1}')

        assert await storage.load("AAPL/metadata.json") == b'{"a": 1}'
        assert await storage.exists("AAPL/metadata.json") is True
        assert await storage.exists("AAPL") is True

    @pytest.mark.asyncio
    async def test_overwrite(self, storage):
        """Test that a second save replaces the payload."""
        await storage.save("A/x.json", b"1")
        await storage.save("A/x.json", b"2")

        assert await storage.load("A/x.json") == b"2"

    @pytest.mark.asyncio
    async def test_load_missing(self, storage):
        """Test reading an absent artifact."""
        with pytest.raises(ArtifactNotFoundError):
            await storage.load("NOPE/metadata.json")
        assert await storage.exists("NOPE") is False

    @pytest.mark.asyncio
    async def test_list(self, storage):
        """Test listing direct children."""
        await storage.save("B/one.json", b"1")
        await storage.save("A/two.json", b"2")
        await storage.save("A/three.json", b"3")

        assert await storage.list("") == ["A", "B"]
        assert await storage.list("A") == ["three.json", "two.json"]
        assert await storage.list("MISSING") == []

    @pytest.mark.asyncio
    async def test_delete_container(self, storage):
        """Test recursive deletion."""
        await storage.save("A/one.json", b"1")
        await storage.save("A/two.json", b"2")

        await storage.delete("A")

        assert await storage.exists("A") is False
        with pytest.raises(ArtifactNotFoundError):
            await storage.delete("A")

    @pytest.mark.asyncio
    async def test_refuses_to_delete_root(self, storage):
        """Test that the storage root cannot be deleted."""
        with pytest.raises(StorageError):
            await storage.delete("")

    @pytest.mark.asyncio
    async def test_move_replaces_target(self, storage):
        """Test that move swaps a whole container into place."""
        await storage.save("A/old.json", b"old")
        await storage.save(".staging-A/new.json", b"new")

        await storage.move(".staging-A", "A")

        assert await storage.list("A") == ["new.json"]
        assert await storage.load("A/new.json") == b"new"
        assert await storage.exists(".staging-A") is False
        assert await storage.list("") == ["A"]

    @pytest.mark.asyncio
    async def test_move_missing_source(self, storage):
        """Test moving a container that does not exist."""
        with pytest.raises(ArtifactNotFoundError):
            await storage.move("NOPE", "A")


class TestLocalFileStorage:
    """Filesystem specifics."""

    @pytest.mark.asyncio
    async def test_files_on_disk(self, tmp_path):
        """Test that artifacts are plain files under the root."""
        storage = LocalFileStorage(tmp_path)
        await storage.save("AAPL/metadata.json", b"{}")

        assert (tmp_path / "AAPL" / "metadata.json").read_bytes() == b"{}"
        assert [p.name for p in (tmp_path / "AAPL").iterdir()] == ["metadata.json"]

    def test_resolve_stays_inside_root(self, tmp_path):
        """Test root containment."""
        storage = LocalFileStorage(tmp_path)

        assert storage.resolve("A/b.json") == (tmp_path / "A" / "b.json").resolve()
        with pytest.raises(StorageError):
            storage.resolve("../escape")

    @pytest.mark.asyncio
    async def test_load_directory(self, tmp_path):
        """Test that reading a container is a storage error."""
        storage = LocalFileStorage(tmp_path)
        (tmp_path / "AAPL").mkdir()

        with pytest.raises(StorageError):
            await storage.load("AAPL")

    def test_unwritable_root(self, tmp_path):
        """Test that a root blocked by a file fails cleanly."""
        blocker = tmp_path / "file"
        blocker.write_text("x")

        with pytest.raises(StorageError):
            LocalFileStorage(blocker / "indexes")


class TestMemoryStorage:
    """In-memory specifics."""

    @pytest.mark.asyncio
    async def test_clear(self):
        """Test dropping everything."""
        storage = MemoryStorage()
        await storage.save("A/x.json", b"1")
        await storage.save("B/y.json", b"2")

        assert storage.clear() == 2
        assert await storage.list("") == []

    @pytest.mark.asyncio
    async def test_rejects_non_bytes(self):
        """Test payload type checking."""
        storage = MemoryStorage()

        with pytest.raises(StorageError):
            await storage.save("A/x.json", "text")


class TestRedisStorage:
    """Redis specifics, against an in-process client."""

    def test_location(self):
        """Test the reported location."""
        storage = RedisStorage("redis://cache:6379", key_prefix="idx:")

        assert storage.location == "redis://cache:6379/idx:"
        assert storage.key_prefix == "idx:"

    @pytest.mark.asyncio
    async def test_keys_are_prefixed(self):
        """Test that artifacts live under the key prefix."""
        client = StubRedis()
        storage = RedisStorage(key_prefix="idx:", client=client)

        await storage.save("AAPL/metadata.json", b"{}")

        assert client.data == {"idx:AAPL/metadata.json": b"{}"}

    @pytest.mark.asyncio
    async def test_other_prefixes_invisible(self):
        """Test that keys outside the prefix are not listed."""
        client = StubRedis()
        client.data["other:A/x.json"] = b"1"
        storage = RedisStorage(client=client)

        assert await storage.list("") == []
        assert await storage.exists("A") is False

    @pytest.mark.asyncio
    async def test_failed_move_changes_nothing(self):
        """Test that an aborted transaction leaves both containers as they were."""
        client = StubRedis()
        storage = RedisStorage(client=client)
        await storage.save("A/old.json", b"old")
        await storage.save(".staging-A/new.json", b"new")
        client.fail_execute = True

        with pytest.raises(StorageError):
            await storage.move(".staging-A", "A")

        assert await storage.load("A/old.json") == b"old"
        assert await storage.load(".staging-A/new.json") == b"new"

    @pytest.mark.asyncio
    async def test_client_errors_become_storage_errors(self):
        """Test that connection failures surface as StorageError."""

        class DownRedis(StubRedis):
            async def get(self, key):
                raise ConnectionError("Connection refused")

        storage = RedisStorage(client=DownRedis())

        with pytest.raises(StorageError):
            await storage.load("A/x.json")

    @pytest.mark.asyncio
    async def test_index_lifecycle(self, sample_documents, sample_vectors):
        """Test a manager backed by Redis end to end."""
        manager = IndexManager(storage=RedisStorage(client=StubRedis()))

        await manager.save_company_index("AAPL", sample_documents, sample_vectors)
        await manager.save_company_index("AAPL", sample_documents[:1], sample_vectors)

        index = await manager.load_company_index("AAPL")
        assert len(index.documents) == 1
        assert [c.company_code for c in await manager.get_all_companies()] == ["AAPL"]
        assert await manager.storage.list("") == ["AAPL"]

        await manager.delete_company_index("AAPL")
        assert await manager.has_company_index("AAPL") is False
