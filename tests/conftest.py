"""Pytest configuration and fixtures for yapi-mcp-server tests."""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from yapi_mcp_server.cache import (
    CredentialTable,
    FetchBackoff,
    PersistentCacheStore,
    ProjectMetadataCache,
)
from yapi_mcp_server.utils.common import (
    CategoryInfo,
    InterfaceDetail,
    InterfaceSummary,
    ProjectInfo,
    SearchResult,
)
from yapi_mcp_server.utils.errors import NotFound

NOW_MS = 1_760_000_000_000


class FakeClock:
    """Callable clock whose time only moves when a test moves it."""

    def __init__(self, now: float):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, amount: float) -> None:
        self.now += amount


class FakeYApiClient:
    """In-process stand-in for YApiClient.

    Responses are looked up per project id; an Exception value is raised
    instead of returned. When ``gate`` is set, project fetches wait on it.
    """

    def __init__(self):
        self.projects: Dict[str, Any] = {}
        self.categories: Dict[str, Any] = {}
        self.category_interfaces: Dict[str, List[InterfaceSummary]] = {}
        self.interfaces: Dict[str, Any] = {}
        self.search_result = SearchResult(total=0, items=[])
        self.calls: List[tuple] = []
        self.completed = 0
        self.gate: Optional[asyncio.Event] = None
        self.saved = []
        self.closed = False

    async def close(self):
        self.closed = True

    def calls_to(self, name: str, *args) -> int:
        return sum(1 for call in self.calls if call[0] == name and call[1:] == args)

    async def get_project_info(self, project_id: str) -> ProjectInfo:
        self.calls.append(("get_project_info", project_id))
        if self.gate is not None:
            await self.gate.wait()
        result = self.projects.get(project_id, NotFound(f"Project {project_id} not found"))
        self.completed += 1
        if isinstance(result, Exception):
            raise result
        return result

    async def get_category_list(self, project_id: str) -> List[CategoryInfo]:
        self.calls.append(("get_category_list", project_id))
        result = self.categories.get(project_id, [])
        if isinstance(result, Exception):
            raise result
        return result

    async def get_category_interfaces(self, project_id, category_id, page=1, limit=50):
        self.calls.append(("get_category_interfaces", project_id, category_id))
        return self.category_interfaces.get(category_id, [])

    async def get_interface(self, interface_id, project_id=None, token=None):
        self.calls.append(("get_interface", interface_id))
        result = self.interfaces.get(interface_id, NotFound(f"Interface {interface_id} not found"))
        if isinstance(result, Exception):
            raise result
        return result

    async def save_interface(self, params) -> str:
        self.calls.append(("save_interface",))
        self.saved.append(params)
        return params.id or "901"

    async def search_interfaces(self, criteria) -> SearchResult:
        self.calls.append(("search_interfaces", tuple(criteria.project_ids or ())))
        return self.search_result


def make_project(project_id: str, name: Optional[str] = None) -> ProjectInfo:
    return ProjectInfo.model_validate(
        {
            "_id": int(project_id),
            "name": name or f"Project {project_id}",
            "desc": "",
            "basepath": f"/p{project_id}",
            "group_id": 1,
            "uid": 7,
        }
    )


def make_category(category_id: str, project_id: str, name: str) -> CategoryInfo:
    return CategoryInfo.model_validate(
        {"_id": category_id, "project_id": project_id, "name": name, "index": 0}
    )


def make_interface(interface_id: str, **fields) -> InterfaceDetail:
    return InterfaceDetail.model_validate({"_id": interface_id, **fields})


@pytest.fixture
def clock() -> FakeClock:
    """Epoch-millisecond clock for the snapshot store."""
    return FakeClock(NOW_MS)


@pytest.fixture
def backoff_clock() -> FakeClock:
    """Monotonic-seconds clock for the fetch backoff."""
    return FakeClock(1000.0)


@pytest.fixture
def credentials() -> CredentialTable:
    return CredentialTable.parse("10:abc,20:def")


@pytest.fixture
def store(tmp_path, clock) -> PersistentCacheStore:
    return PersistentCacheStore(cache_dir=tmp_path / "cache", clock=clock)


@pytest.fixture
def fake_client() -> FakeYApiClient:
    client = FakeYApiClient()
    client.projects = {"10": make_project("10", "Orders"), "20": make_project("20", "Users")}
    client.categories = {
        "10": [make_category("101", "10", "Checkout")],
        "20": [make_category("201", "20", "Accounts")],
    }
    return client


@pytest.fixture
def metadata_cache(credentials, fake_client, store, backoff_clock) -> ProjectMetadataCache:
    return ProjectMetadataCache(
        credentials=credentials,
        client=fake_client,
        store=store,
        ttl_minutes=360,
        backoff=FetchBackoff(base_delay=5.0, max_delay=60.0, clock=backoff_clock),
    )
