import json
import logging

from conftest import NOW_MS, make_project
from yapi_mcp_server.cache.store import CacheSnapshot, PersistentCacheStore

MINUTE_MS = 60 * 1000


def test_load_missing_file_returns_none(store):
    assert store.load() is None
    assert store.is_expired(360) is True


def test_save_then_load(store):
    projects = {"10": make_project("10", "Orders"), "20": make_project("20", "Users")}

    assert store.save(projects) is True
    snapshot = store.load()

    assert snapshot is not None
    assert snapshot.schema_version == 1
    assert snapshot.created_at == NOW_MS
    assert snapshot.project_info_by_id == projects
    assert list(snapshot.project_info_by_id) == ["10", "20"]


def test_saved_file_uses_backend_field_names(store):
    store.save({"10": make_project("10", "Orders")})

    raw = json.loads(store.path.read_text(encoding="utf-8"))

    assert raw["schemaVersion"] == 1
    assert raw["createdAt"] == NOW_MS
    assert raw["projectInfoById"]["10"]["_id"] == "10"
    assert raw["projectInfoById"]["10"]["basepath"] == "/p10"


def test_save_leaves_no_temporary_files(store):
    store.save({"10": make_project("10")})
    store.save({"20": make_project("20")})

    assert [p.name for p in store.cache_dir.iterdir()] == ["project-info.json"]


def test_expiry_boundary(store, clock):
    store.save({"10": make_project("10")})

    clock.advance(359 * MINUTE_MS)
    assert store.is_expired(360) is False

    clock.now = NOW_MS + 360 * MINUTE_MS
    assert store.is_expired(360) is False

    clock.now = NOW_MS + 361 * MINUTE_MS
    assert store.is_expired(360) is True


def test_snapshot_expiry():
    snapshot = CacheSnapshot(schema_version=1, created_at=1000, project_info_by_id={})

    assert snapshot.expires_at(1) == 1000 + MINUTE_MS
    assert snapshot.is_expired(1, 1000 + MINUTE_MS) is False
    assert snapshot.is_expired(1, 1001 + MINUTE_MS) is True


def test_corrupt_file_is_treated_as_missing(store, caplog):
    store.cache_dir.mkdir(parents=True)
    store.path.write_text("{not json", encoding="utf-8")

    with caplog.at_level(logging.WARNING):
        assert store.load() is None
    assert store.is_expired(360) is True
    assert "Ignoring project info cache" in caplog.text


def test_wrong_schema_version_is_treated_as_missing(store):
    store.cache_dir.mkdir(parents=True)
    store.path.write_text(
        json.dumps({"schemaVersion": 2, "createdAt": NOW_MS, "projectInfoById": {}}),
        encoding="utf-8",
    )

    assert store.load() is None


def test_missing_timestamp_is_treated_as_missing(store):
    store.cache_dir.mkdir(parents=True)
    store.path.write_text(
        json.dumps({"schemaVersion": 1, "projectInfoById": {}}), encoding="utf-8"
    )

    assert store.load() is None


def test_non_object_is_treated_as_missing(store):
    store.cache_dir.mkdir(parents=True)
    store.path.write_text("[1, 2, 3]", encoding="utf-8")

    assert store.load() is None


def test_invalid_project_entry_is_treated_as_missing(store):
    store.cache_dir.mkdir(parents=True)
    store.path.write_text(
        json.dumps(
            {"schemaVersion": 1, "createdAt": NOW_MS, "projectInfoById": {"10": "oops"}}
        ),
        encoding="utf-8",
    )

    assert store.load() is None


def test_clear_is_idempotent(store):
    store.save({"10": make_project("10")})

    store.clear()
    assert not store.path.exists()
    store.clear()
    assert store.load() is None


def test_created_at_never_goes_backwards(store, clock):
    store.save({"10": make_project("10")})
    clock.advance(-5 * MINUTE_MS)

    store.save({"10": make_project("10")})

    assert store.load().created_at == NOW_MS


def test_save_failure_returns_false(tmp_path, clock, caplog):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    store = PersistentCacheStore(cache_dir=blocker / "cache", clock=clock)

    with caplog.at_level(logging.ERROR):
        assert store.save({"10": make_project("10")}) is False
    assert "Failed to save project info cache" in caplog.text


def test_default_cache_dir_is_under_working_directory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    store = PersistentCacheStore()

    assert store.path == tmp_path / ".yapi-cache" / "project-info.json"


def test_missing_project_map_is_treated_as_missing(store):
    store.cache_dir.mkdir(parents=True)
    store.path.write_text(
        json.dumps({"schemaVersion": 1, "createdAt": NOW_MS}), encoding="utf-8"
    )

    assert store.load() is None
    assert store.is_expired(360) is True
