import asyncio

from core.cache import CacheManager
from core.config import Settings
from core.storage import (
    DurableStore,
    FileStore,
    MemoryStore,
    SQLiteStore,
    async_database_url,
    create_store,
)


def run_async(coro):
    return asyncio.run(coro)


def test_memory_store_round_trips_through_json():
    async def scenario() -> None:
        store = MemoryStore()
        await store.save("snapshot", {"k": {"data": (1, 2)}})

        assert await store.load("snapshot") == {"k": {"data": [1, 2]}}
        assert await store.load("missing", {}) == {}

    run_async(scenario())


def test_memory_store_stringifies_unknown_types():
    async def scenario() -> None:
        store = MemoryStore()
        assert await store.save("odd", {"x": {1}}) is True
        assert await store.load("odd") == {"x": "{1}"}
        assert await store.remove("never-written") is True

    run_async(scenario())


def test_file_store_round_trip_and_remove(tmp_path):
    async def scenario() -> None:
        store = FileStore(str(tmp_path / "cache"))

        assert await store.load("app-cache", {}) == {}
        assert await store.save("app-cache", {"campaigns": [1, 2, 3]}) is True
        assert await store.load("app-cache") == {"campaigns": [1, 2, 3]}

        assert await store.save("app-cache", {"campaigns": []}) is True
        assert await store.load("app-cache") == {"campaigns": []}

        assert await store.remove("app-cache") is True
        assert await store.load("app-cache", "gone") == "gone"
        assert await store.remove("app-cache") is True

    run_async(scenario())


def test_file_store_corrupt_document_reads_as_default(tmp_path):
    store = FileStore(str(tmp_path))
    (tmp_path / "app-cache.json").write_text("{not json", encoding="utf-8")

    assert run_async(store.load("app-cache", {})) == {}


def test_file_store_sanitizes_keys(tmp_path):
    async def scenario() -> None:
        store = FileStore(str(tmp_path))
        await store.save("../escape/attempt", {"ok": True})

        assert await store.load("../escape/attempt") == {"ok": True}

    run_async(scenario())
    assert list(tmp_path.iterdir()) == [tmp_path / ".._escape_attempt.json"]


def test_file_store_unwritable_directory_reports_failure(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory", encoding="utf-8")
    store = FileStore(str(blocker / "cache"))

    async def scenario() -> None:
        assert await store.save("app-cache", {"k": 1}) is False
        assert await store.load("app-cache", "default") == "default"

    run_async(scenario())


def test_plain_sqlite_urls_use_the_async_driver():
    assert async_database_url("sqlite:///data/cache.db") == "sqlite+aiosqlite:///data/cache.db"
    assert async_database_url("sqlite+aiosqlite:///x.db") == "sqlite+aiosqlite:///x.db"


def test_sqlite_store_round_trip_overwrite_and_remove(tmp_path):
    async def scenario() -> None:
        store = SQLiteStore(f"sqlite:///{tmp_path / 'cache.db'}")
        try:
            assert await store.load("app-cache", {}) == {}
            assert await store.save("app-cache", {"a": 1}) is True
            assert await store.save("app-cache", {"b": 2}) is True
            assert await store.load("app-cache") == {"b": 2}

            assert await store.remove("app-cache") is True
            assert await store.load("app-cache") is None
        finally:
            await store.close()

    run_async(scenario())


def test_sqlite_store_unreachable_database_degrades(tmp_path):
    missing_dir = tmp_path / "does" / "not" / "exist"

    async def scenario() -> None:
        store = SQLiteStore(f"sqlite:///{missing_dir / 'cache.db'}")
        assert await store.load("app-cache", {}) == {}
        assert await store.save("app-cache", {"a": 1}) is False
        assert await store.remove("app-cache") is False
        await store.close()

    run_async(scenario())


def test_cache_manager_survives_restart_on_sqlite(tmp_path):
    url = f"sqlite:///{tmp_path / 'cache.db'}"

    async def first_run() -> None:
        store = SQLiteStore(url)
        first = CacheManager(store)
        first.set("email-status:abc", {"connected": True}, tags=["email-connection"])
        await first.flush()
        await store.close()

    async def second_run() -> None:
        store = SQLiteStore(url)
        second = CacheManager(store)
        try:
            assert await second.load() == 1
            assert second.get("email-status:abc") == {"connected": True}
            assert second.get_tags() == ["email-connection"]
        finally:
            await store.close()

    run_async(first_run())
    run_async(second_run())


def test_create_store_follows_settings(tmp_path):
    db_url = f"sqlite:///{tmp_path / 'cache.db'}"

    sqlite_store = create_store(Settings(cache_backend="sqlite", cache_database_url=db_url))
    file_store = create_store(Settings(cache_backend="file", cache_database_url=db_url,
                                       cache_file_dir=str(tmp_path / "files")))
    memory_store = create_store(Settings(cache_backend="memory", cache_database_url=db_url))

    assert isinstance(sqlite_store, SQLiteStore)
    assert isinstance(file_store, FileStore)
    assert isinstance(memory_store, MemoryStore)
    for store in (sqlite_store, file_store, memory_store):
        assert isinstance(store, DurableStore)
