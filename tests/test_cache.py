"""Tests for the analysis cache, change detection and the file watcher."""

import threading
from pathlib import Path

import pytest
from watchdog.events import DirModifiedEvent, FileModifiedEvent, FileMovedEvent

from analyzers.diagnostics import DiagnosticCollector, Severity
from cache.cache_manager import CacheManager, EntryState
from cache.change_detector import ChangeDetector
from cache.file_watcher import CacheInvalidationHandler
from cache.stores import CacheRecord, MemoryStore, SqliteStore
from config import GeneratorConfig
from generators.openapi_generator import OpenApiGenerator, analysis_salt

from tests.conftest import write_tree


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestStores:
    def test_memory_store(self) -> None:
        store = MemoryStore()
        store.set("b.py", CacheRecord("fp", {"x": 1}, 0))
        store.set("a.py", CacheRecord("fp", {}, 0))
        assert store.keys() == ["a.py", "b.py"]
        assert store.get("b.py").payload == {"x": 1}
        assert store.delete("b.py") is True
        assert store.delete("b.py") is False
        assert store.clear() == 1
        assert len(store) == 0

    def test_sqlite_store_persists(self, tmp_path: Path) -> None:
        db_path = str(tmp_path / "nested" / "cache.db")
        record = CacheRecord("fp1", {"models": [{"name": "User"}]}, 1000, 60, {"source": "test"})
        SqliteStore(db_path).set("app/models.py", record)

        store = SqliteStore(db_path)
        assert store.get("app/models.py") == record
        assert store.get("missing.py") is None
        assert store.keys() == ["app/models.py"]
        assert store.size_bytes() > 0
        assert store.clear() == 1
        assert store.keys() == []


class TestCacheManager:
    def test_states_and_stats(self) -> None:
        cache = CacheManager()
        assert cache.state("a.py") is EntryState.UNKNOWN
        assert cache.get("a.py", "fp1") is None
        assert cache.state("a.py") is EntryState.FRESH

        cache.set("a.py", "fp1", {"v": 1})
        assert cache.state("a.py") is EntryState.CACHED
        assert cache.get("a.py", "fp1") == {"v": 1}
        assert cache.state("a.py") is EntryState.CACHED

        assert cache.get("a.py", "fp2") is None
        assert cache.state("a.py") is EntryState.STALE

        stats = cache.get_stats()
        assert (stats["hits"], stats["misses"], stats["sets"], stats["entries"]) == (1, 2, 1, 1)
        assert stats["hit_rate"] == pytest.approx(1 / 3)

    def test_ttl_expiry(self) -> None:
        clock = FakeClock()
        cache = CacheManager(MemoryStore(), ttl_seconds=10, clock=clock)
        cache.set("a.py", "fp", {"v": 1})

        clock.now += 10
        assert cache.get("a.py", "fp") == {"v": 1}

        clock.now += 1
        assert cache.get("a.py", "fp") is None
        assert cache.state("a.py") is EntryState.STALE
        assert cache.stats["evictions"] == 1
        assert cache.store.keys() == []

    def test_clear_expired(self) -> None:
        clock = FakeClock()
        cache = CacheManager(MemoryStore(), ttl_seconds=5, clock=clock)
        cache.set("old.py", "fp", {})
        clock.now += 6
        cache.set("new.py", "fp", {})
        assert cache.clear_expired() == 1
        assert cache.store.keys() == ["new.py"]

    def test_invalidate_and_reset(self) -> None:
        cache = CacheManager()
        cache.set("a.py", "fp", {})
        assert cache.invalidate("a.py") is True
        assert cache.get("a.py", "fp") is None
        assert cache.state("a.py") is EntryState.STALE

        cache.set("b.py", "fp", {})
        assert cache.reset() == 1
        assert cache.state("b.py") is EntryState.UNKNOWN

    def test_stale_entry_returns_to_cached_once_stored(self) -> None:
        cache = CacheManager()
        cache.set("a.py", "fp1", {"v": 1})
        cache.invalidate("a.py")
        assert cache.get("a.py", "fp2") is None
        assert cache.state("a.py") is EntryState.STALE

        cache.set("a.py", "fp2", {"v": 2})
        assert cache.state("a.py") is EntryState.CACHED
        assert cache.get("a.py", "fp2") == {"v": 2}

    def test_concurrent_invalidation_keeps_counts(self) -> None:
        cache = CacheManager()

        def churn(worker: int) -> None:
            for i in range(200):
                path = f"w{worker}/{i % 5}.py"
                cache.set(path, "fp", {})
                cache.get(path, "fp")
                cache.invalidate(path)

        threads = [threading.Thread(target=churn, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        stats = cache.get_stats()
        assert (stats["sets"], stats["hits"], stats["invalidations"]) == (800, 800, 800)
        assert stats["entries"] == 0
        assert all(cache.state(f"w{n}/{i}.py") is EntryState.STALE for n in range(4) for i in range(5))

    def test_for_backend(self, tmp_path: Path) -> None:
        assert CacheManager.for_backend("none") is None
        assert isinstance(CacheManager.for_backend("memory").store, MemoryStore)
        assert isinstance(CacheManager.for_backend("sqlite", str(tmp_path / "c.db")).store, SqliteStore)


class TestIncrementalBuilds:
    def test_second_build_is_served_from_cache(self, generator) -> None:
        first = generator.build()
        second = generator.build()
        assert (second.stats["analyzed"], second.stats["cached"]) == (0, 4)
        assert (first.stats["changed"], first.stats["unchanged"]) == (4, 0)
        assert (second.stats["changed"], second.stats["unchanged"]) == (0, 4)
        assert second.to_json() == first.to_json()

    def test_one_byte_change_reanalyzes_one_file(self, generator, sample_app) -> None:
        generator.build()
        views = sample_app / "app" / "views.py"
        views.write_text(views.read_text(encoding="utf-8").replace("Fetch one item.", "Fetch one items."),
                         encoding="utf-8")

        detector = ChangeDetector(str(sample_app), salt=analysis_salt(generator.config))
        fingerprint = detector.read(views).fingerprint
        assert generator.cache.get("app/views.py", fingerprint) is None
        assert generator.cache.state("app/views.py") is EntryState.STALE

        result = generator.build()
        assert (result.stats["analyzed"], result.stats["cached"]) == (1, 3)
        assert (result.stats["changed"], result.stats["unchanged"]) == (1, 3)
        assert generator.cache.state("app/views.py") is EntryState.CACHED
        assert generator.cache.state("app/models.py") is EntryState.CACHED
        assert result.document["paths"]["/items/{id}"]["get"]["summary"] == "Fetch one items."

    def test_cached_output_matches_uncached_output(self, generator, sample_app) -> None:
        generator.build()
        cached = generator.build().to_json()
        uncached = OpenApiGenerator(GeneratorConfig(source_root=str(sample_app), title="Sample API",
                                                    cache_backend="none")).build()
        assert "cache" not in uncached.stats
        assert uncached.to_json() == cached

    def test_sqlite_cache_survives_generators(self, sample_app, tmp_path: Path) -> None:
        config = GeneratorConfig(source_root=str(sample_app), cache_backend="sqlite",
                                 cache_path=str(tmp_path / "cache.db"))
        first = OpenApiGenerator(config).build()
        second = OpenApiGenerator(config).build()
        assert second.stats["cached"] == 4
        assert second.to_json() == first.to_json()

    def test_model_bases_change_invalidates(self, sample_app) -> None:
        cache = CacheManager()
        OpenApiGenerator(GeneratorConfig(source_root=str(sample_app)), cache=cache).build()
        config = GeneratorConfig(source_root=str(sample_app), model_bases=["Base", "Document"])
        result = OpenApiGenerator(config, cache=cache).build()
        assert result.stats["cached"] == 0


class TestChangeDetector:
    def test_discovery_is_sorted_and_filtered(self, tmp_path: Path) -> None:
        write_tree(tmp_path, {
            "b.py": "",
            "a/z.py": "",
            "a/b.py": "",
            "notes.txt": "",
            "venv/lib.py": "",
            "pkg.egg-info/x.py": "",
        })
        detector = ChangeDetector(str(tmp_path), ignore_dirs={"venv"})
        assert [detector.relative(p) for p in detector.discover()] == ["a/b.py", "a/z.py", "b.py"]
        assert detector.stats["files_skipped"] == 1

    def test_large_file_is_skipped_with_warning(self, tmp_path: Path) -> None:
        write_tree(tmp_path, {"big.py": "x = 1\n" * 400, "small.py": ""})
        collector = DiagnosticCollector(log=False)
        detector = ChangeDetector(str(tmp_path), max_file_size_mb=0.001, diagnostics=collector)
        assert [p.name for p in detector.discover()] == ["small.py"]
        [diagnostic] = collector.diagnostics
        assert diagnostic.severity is Severity.WARNING
        assert diagnostic.path == "big.py"

    def test_invalid_utf8_is_an_error(self, tmp_path: Path) -> None:
        (tmp_path / "bad.py").write_bytes(b"\xff\xfe\x00x")
        collector = DiagnosticCollector(log=False)
        detector = ChangeDetector(str(tmp_path), diagnostics=collector)
        assert detector.read(tmp_path / "bad.py") is None
        assert collector.diagnostics[0].severity is Severity.ERROR
        assert detector.stats["files_errored"] == 1

    def test_fingerprints(self, tmp_path: Path) -> None:
        path = tmp_path / "a.py"
        path.write_text("x = 1\n", encoding="utf-8")
        detector = ChangeDetector(str(tmp_path))
        first = detector.read(path)
        assert detector.read(path).fingerprint == first.fingerprint
        assert ChangeDetector(str(tmp_path), salt="other").read(path).fingerprint != first.fingerprint

        path.write_text("x = 2\n", encoding="utf-8")
        assert detector.read(path).fingerprint != first.fingerprint

    def test_get_changed_files(self, tmp_path: Path) -> None:
        write_tree(tmp_path, {"a.py": "a = 1\n", "b.py": "b = 1\n"})
        detector = ChangeDetector(str(tmp_path))

        def scan():
            return detector.get_changed_files([detector.read(p) for p in detector.discover()])

        changed, unchanged = scan()
        assert (len(changed), len(unchanged)) == (2, 0)

        (tmp_path / "b.py").write_text("b = 2\n", encoding="utf-8")
        changed, unchanged = scan()
        assert [s.relative for s in changed] == ["b.py"]
        assert [s.relative for s in unchanged] == ["a.py"]


class TestCacheInvalidationHandler:
    @pytest.fixture
    def cache(self) -> CacheManager:
        cache = CacheManager()
        cache.set("app/views.py", "fp", {})
        cache.set("app/models.py", "fp", {})
        return cache

    def test_modified_file_is_invalidated(self, tmp_path: Path, cache) -> None:
        handler = CacheInvalidationHandler(str(tmp_path), cache)
        handler.on_modified(FileModifiedEvent(str(tmp_path / "app" / "views.py")))

        assert cache.state("app/views.py") is EntryState.STALE
        assert cache.get("app/views.py", "fp") is None
        assert handler.get_pending_changes() == {"app/views.py"}
        assert handler.has_pending_changes() is False

    def test_move_invalidates_both_paths(self, tmp_path: Path, cache) -> None:
        handler = CacheInvalidationHandler(str(tmp_path), cache)
        handler.on_moved(FileMovedEvent(str(tmp_path / "app" / "models.py"), str(tmp_path / "app" / "orm.py")))
        assert handler.get_pending_changes() == {"app/models.py", "app/orm.py"}

    def test_irrelevant_events_are_ignored(self, tmp_path: Path, cache) -> None:
        handler = CacheInvalidationHandler(str(tmp_path), cache, ignore_dirs={"venv"})
        handler.on_modified(FileModifiedEvent(str(tmp_path / "README.md")))
        handler.on_modified(FileModifiedEvent(str(tmp_path / "venv" / "x.py")))
        handler.on_modified(DirModifiedEvent(str(tmp_path / "app")))
        assert handler.has_pending_changes() is False
        assert cache.state("app/views.py") is EntryState.CACHED
