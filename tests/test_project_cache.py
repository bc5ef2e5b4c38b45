import asyncio

import pytest

from conftest import make_category, make_interface, make_project
from yapi_mcp_server.cache import (
    CacheState,
    CredentialTable,
    ProjectMetadataCache,
    RefreshOutcome,
)
from yapi_mcp_server.utils.common import SearchCriteria, SearchResult, SearchResultItem
from yapi_mcp_server.utils.errors import NotFound, TransportError, Unauthorized

MINUTE_MS = 60 * 1000


@pytest.mark.asyncio
async def test_initialize_on_cold_start_does_not_wait_for_network(metadata_cache, fake_client, store):
    fake_client.gate = asyncio.Event()

    task = metadata_cache.initialize()
    assert task is not None
    await asyncio.sleep(0)

    assert fake_client.completed == 0
    assert metadata_cache.list_projects() == []
    assert metadata_cache.state == CacheState.REFRESHING
    assert metadata_cache.is_refreshing

    fake_client.gate.set()
    result = await metadata_cache.wait_for_refresh()

    assert result.outcome == RefreshOutcome.SUCCESS
    assert [p.id for p in metadata_cache.list_projects()] == ["10", "20"]
    assert metadata_cache.state == CacheState.WARM
    assert metadata_cache.generation == 1
    assert list(store.load().project_info_by_id) == ["10", "20"]


@pytest.mark.asyncio
async def test_initialize_with_fresh_snapshot_makes_no_calls(metadata_cache, fake_client, store):
    store.save({"10": make_project("10", "Cached Orders")})

    assert metadata_cache.initialize() is None

    assert [p.name for p in metadata_cache.list_projects()] == ["Cached Orders"]
    assert metadata_cache.state == CacheState.WARM
    assert fake_client.calls == []


@pytest.mark.asyncio
async def test_initialize_with_expired_snapshot_refreshes(metadata_cache, fake_client, store, clock):
    store.save({"10": make_project("10", "Old")})
    clock.advance(361 * MINUTE_MS)

    task = metadata_cache.initialize()
    assert task is not None
    await task

    assert fake_client.calls_to("get_project_info", "10") == 1
    assert metadata_cache.list_projects()[0].name == "Orders"


@pytest.mark.asyncio
async def test_initialize_with_empty_snapshot_refreshes(metadata_cache, store):
    store.save({})

    task = metadata_cache.initialize()

    assert task is not None
    await task
    assert len(metadata_cache.list_projects()) == 2


@pytest.mark.asyncio
async def test_initialize_recovers_from_unexpected_store_error(metadata_cache, store, monkeypatch):
    def broken(ttl_minutes):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(store, "is_expired", broken)

    task = metadata_cache.initialize()

    assert task is not None
    await task
    assert len(metadata_cache.list_projects()) == 2


@pytest.mark.asyncio
async def test_partial_failure_keeps_successful_projects(metadata_cache, fake_client, store):
    fake_client.projects["20"] = TransportError("connection refused")

    result = await metadata_cache.refresh_all()

    assert result.outcome == RefreshOutcome.PARTIAL
    assert result.succeeded == ["10"]
    assert list(result.failed) == ["20"]
    assert [p.id for p in metadata_cache.list_projects()] == ["10"]
    assert list(store.load().project_info_by_id) == ["10"]

    before = fake_client.calls_to("get_project_info", "20")
    with pytest.raises(TransportError):
        await metadata_cache.get_project_info("20")
    assert fake_client.calls_to("get_project_info", "20") == before + 1


@pytest.mark.asyncio
async def test_failed_project_keeps_previous_entry(metadata_cache, fake_client, store):
    store.save({"10": make_project("10", "Old Orders"), "20": make_project("20", "Old Users")})
    metadata_cache.initialize()
    fake_client.projects["20"] = TransportError("timeout")

    result = await metadata_cache.refresh_all()

    assert result.outcome == RefreshOutcome.PARTIAL
    names = {p.id: p.name for p in metadata_cache.list_projects()}
    assert names == {"10": "Orders", "20": "Old Users"}
    saved = store.load().project_info_by_id
    assert saved["10"].name == "Orders"
    assert saved["20"].name == "Old Users"


@pytest.mark.asyncio
async def test_total_failure_leaves_cache_and_snapshot_untouched(metadata_cache, fake_client, store):
    store.save({"10": make_project("10", "Old Orders")})
    metadata_cache.initialize()
    snapshot_bytes = store.path.read_bytes()
    fake_client.projects = {
        "10": TransportError("down"),
        "20": Unauthorized("token rejected"),
    }

    result = await metadata_cache.refresh_all()

    assert result.outcome == RefreshOutcome.FAILED
    assert set(result.failed) == {"10", "20"}
    assert store.path.read_bytes() == snapshot_bytes
    assert [p.name for p in metadata_cache.list_projects()] == ["Old Orders"]
    assert metadata_cache.state == CacheState.WARM
    assert metadata_cache.generation == 0


@pytest.mark.asyncio
async def test_total_failure_on_cold_start_stays_cold(metadata_cache, fake_client, store):
    fake_client.projects = {"10": TransportError("down"), "20": TransportError("down")}

    result = await metadata_cache.refresh_all()

    assert result.outcome == RefreshOutcome.FAILED
    assert metadata_cache.state == CacheState.COLD
    assert store.load() is None


@pytest.mark.asyncio
async def test_unexpected_fetch_error_is_isolated(metadata_cache, fake_client):
    fake_client.projects["10"] = KeyError("surprise")

    result = await metadata_cache.refresh_all()

    assert result.outcome == RefreshOutcome.PARTIAL
    assert [p.id for p in metadata_cache.list_projects()] == ["20"]


@pytest.mark.asyncio
async def test_only_one_refresh_runs_at_a_time(metadata_cache, fake_client):
    fake_client.gate = asyncio.Event()

    first = metadata_cache.trigger_refresh()
    await asyncio.sleep(0)
    second = metadata_cache.trigger_refresh()
    skipped = await metadata_cache.refresh_all()

    assert first is not None
    assert second is None
    assert skipped.outcome == RefreshOutcome.SKIPPED

    fake_client.gate.set()
    await first

    assert fake_client.calls_to("get_project_info", "10") == 1
    assert fake_client.calls_to("get_project_info", "20") == 1
    assert not metadata_cache.is_refreshing


@pytest.mark.asyncio
async def test_refresh_can_run_again_after_finishing(metadata_cache, fake_client):
    await metadata_cache.refresh_all()
    await metadata_cache.refresh_all()

    assert fake_client.calls_to("get_project_info", "10") == 2
    assert metadata_cache.generation == 2


@pytest.mark.asyncio
async def test_refresh_caches_categories(metadata_cache, fake_client):
    await metadata_cache.refresh_all()

    categories = await metadata_cache.get_categories("10")

    assert [c.name for c in categories] == ["Checkout"]
    assert fake_client.calls_to("get_category_list", "10") == 1


@pytest.mark.asyncio
async def test_category_failure_is_isolated(metadata_cache, fake_client):
    fake_client.categories["20"] = TransportError("down")

    result = await metadata_cache.refresh_all()

    assert result.outcome == RefreshOutcome.PARTIAL
    assert list(result.categories_failed) == ["20"]
    assert result.failed == {}
    assert [c.name for c in await metadata_cache.get_categories("10")] == ["Checkout"]

    fake_client.categories["20"] = [make_category("201", "20", "Accounts")]
    categories = await metadata_cache.get_categories("20")

    assert [c.name for c in categories] == ["Accounts"]
    assert fake_client.calls_to("get_category_list", "20") == 2


@pytest.mark.asyncio
async def test_get_project_info_from_cache(metadata_cache, fake_client):
    await metadata_cache.refresh_all()
    calls = len(fake_client.calls)

    info = await metadata_cache.get_project_info("10")

    assert info.name == "Orders"
    assert len(fake_client.calls) == calls


@pytest.mark.asyncio
async def test_get_project_info_unconfigured_project(metadata_cache, fake_client):
    assert await metadata_cache.get_project_info("99") is None
    assert await metadata_cache.get_categories("99") is None
    assert fake_client.calls == []


@pytest.mark.asyncio
async def test_get_project_info_on_demand_warms_cache(metadata_cache, fake_client):
    info = await metadata_cache.get_project_info(20)

    assert info.name == "Users"
    assert metadata_cache.state == CacheState.WARM
    assert [p.id for p in metadata_cache.list_projects()] == ["20"]


@pytest.mark.asyncio
async def test_on_demand_fetch_backs_off_after_failure(metadata_cache, fake_client, backoff_clock):
    fake_client.projects["20"] = TransportError("down")

    with pytest.raises(TransportError):
        await metadata_cache.get_project_info("20")
    with pytest.raises(TransportError):
        await metadata_cache.get_project_info("20")
    assert fake_client.calls_to("get_project_info", "20") == 1

    fake_client.projects["20"] = make_project("20", "Users")
    backoff_clock.advance(5.1)

    info = await metadata_cache.get_project_info("20")

    assert info.name == "Users"
    assert fake_client.calls_to("get_project_info", "20") == 2


@pytest.mark.asyncio
async def test_successful_refresh_clears_backoff(metadata_cache, fake_client):
    fake_client.projects["20"] = TransportError("down")
    with pytest.raises(TransportError):
        await metadata_cache.get_project_info("20")

    fake_client.projects["20"] = make_project("20", "Users")
    await metadata_cache.refresh_all()
    metadata_cache._project_info.pop("20")

    info = await metadata_cache.get_project_info("20")

    assert info.name == "Users"


@pytest.mark.asyncio
async def test_category_interfaces_for_cached_category(metadata_cache, fake_client):
    await metadata_cache.refresh_all()
    fake_client.category_interfaces["101"] = [make_interface("5", title="Pay")]

    interfaces = await metadata_cache.get_category_interfaces("10", "101")

    assert [i.title for i in interfaces] == ["Pay"]
    assert fake_client.calls_to("get_category_list", "10") == 1


@pytest.mark.asyncio
async def test_category_interfaces_refetches_unknown_category(metadata_cache, fake_client):
    await metadata_cache.refresh_all()
    fake_client.categories["10"] = [
        make_category("101", "10", "Checkout"),
        make_category("102", "10", "Refunds"),
    ]

    await metadata_cache.get_category_interfaces("10", "102")

    assert fake_client.calls_to("get_category_list", "10") == 2
    assert [c.id for c in await metadata_cache.get_categories("10")] == ["101", "102"]


@pytest.mark.asyncio
async def test_category_interfaces_missing_category(metadata_cache, fake_client):
    await metadata_cache.refresh_all()

    with pytest.raises(NotFound):
        await metadata_cache.get_category_interfaces("10", "999")
    assert fake_client.calls_to("get_category_interfaces", "10", "999") == 0


@pytest.mark.asyncio
async def test_category_interfaces_unconfigured_project(metadata_cache, fake_client):
    with pytest.raises(Unauthorized):
        await metadata_cache.get_category_interfaces("99", "1")
    assert fake_client.calls == []


@pytest.mark.asyncio
async def test_get_interface_passes_project(metadata_cache, fake_client):
    fake_client.interfaces["66"] = make_interface("66", title="Pay", path="/pay")

    detail = await metadata_cache.get_interface("10", "66")

    assert detail.path == "/pay"


@pytest.mark.asyncio
async def test_search_enriches_with_cached_names(metadata_cache, fake_client):
    await metadata_cache.refresh_all()
    fake_client.search_result = SearchResult(
        total=1,
        items=[
            SearchResultItem.model_validate(
                {"_id": 5, "title": "Pay", "path": "/pay", "project_id": 10, "catid": 101}
            )
        ],
    )

    result = await metadata_cache.search_interfaces(SearchCriteria(name_keyword="pay"))

    assert result.total == 1
    assert result.items[0].project_name == "Orders"
    assert result.items[0].category_name == "Checkout"


@pytest.mark.asyncio
async def test_search_resolves_project_keyword(metadata_cache, fake_client):
    await metadata_cache.refresh_all()

    await metadata_cache.search_interfaces(SearchCriteria(project_keyword="user"))
    await metadata_cache.search_interfaces(SearchCriteria(project_keyword="10"))

    searches = [call for call in fake_client.calls if call[0] == "search_interfaces"]
    assert searches == [("search_interfaces", ("20",)), ("search_interfaces", ("10",))]


@pytest.mark.asyncio
async def test_search_unknown_project_keyword_makes_no_call(metadata_cache, fake_client):
    await metadata_cache.refresh_all()

    result = await metadata_cache.search_interfaces(SearchCriteria(project_keyword="billing"))

    assert result.total == 0
    assert not any(call[0] == "search_interfaces" for call in fake_client.calls)


@pytest.mark.asyncio
async def test_clear_cache_without_refresh(metadata_cache, store):
    await metadata_cache.refresh_all()
    assert store.path.exists()

    assert metadata_cache.clear_cache(refresh=False) is None

    assert not store.path.exists()
    assert metadata_cache.list_projects() == []
    assert metadata_cache.state == CacheState.COLD


@pytest.mark.asyncio
async def test_clear_cache_with_refresh(metadata_cache, store):
    await metadata_cache.refresh_all()

    task = metadata_cache.clear_cache()
    assert task is not None
    await task

    assert len(metadata_cache.list_projects()) == 2
    assert store.path.exists()


@pytest.mark.asyncio
async def test_no_credentials_refresh_does_nothing(fake_client, store):
    cache = ProjectMetadataCache(CredentialTable(), fake_client, store)

    result = await cache.refresh_all()

    assert result.outcome == RefreshOutcome.FAILED
    assert fake_client.calls == []
    assert cache.state == CacheState.COLD


@pytest.mark.asyncio
async def test_status(metadata_cache, store):
    await metadata_cache.refresh_all()

    status = metadata_cache.status()

    assert status["state"] == "warm"
    assert status["generation"] == 1
    assert status["configured_projects"] == 2
    assert status["cached_projects"] == 2
    assert status["projects_with_categories"] == 2
    assert status["cache_file"] == str(store.path)
    assert status["last_refresh"]["outcome"] == "success"


@pytest.mark.asyncio
async def test_initialize_runs_only_once(metadata_cache, fake_client, store):
    fake_client.gate = asyncio.Event()
    first = metadata_cache.initialize()
    await asyncio.sleep(0)
    store.save({"10": make_project("10", "Snapshot Orders")})

    second = metadata_cache.initialize()

    assert first is not None
    assert second is None
    assert metadata_cache.state == CacheState.REFRESHING
    assert metadata_cache.list_projects() == []
    fake_client.gate.set()
    await first
    assert [p.name for p in metadata_cache.list_projects()] == ["Orders", "Users"]


@pytest.mark.asyncio
async def test_unknown_category_is_backed_off(metadata_cache, fake_client, backoff_clock):
    await metadata_cache.refresh_all()

    with pytest.raises(NotFound):
        await metadata_cache.get_category_interfaces("10", "999")
    with pytest.raises(NotFound):
        await metadata_cache.get_category_interfaces("10", "999")
    assert fake_client.calls_to("get_category_list", "10") == 2

    fake_client.categories["10"] = [
        make_category("101", "10", "Checkout"),
        make_category("999", "10", "New"),
    ]
    backoff_clock.advance(5.1)

    await metadata_cache.get_category_interfaces("10", "999")

    assert fake_client.calls_to("get_category_list", "10") == 3
    assert fake_client.calls_to("get_category_interfaces", "10", "999") == 1


@pytest.mark.asyncio
async def test_known_category_ignores_backoff_of_unknown_one(metadata_cache, fake_client):
    await metadata_cache.refresh_all()
    with pytest.raises(NotFound):
        await metadata_cache.get_category_interfaces("10", "999")

    await metadata_cache.get_category_interfaces("10", "101")

    assert fake_client.calls_to("get_category_interfaces", "10", "101") == 1
