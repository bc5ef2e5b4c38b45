# Copyright contributors to the YApi MCP Server project
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from pydantic import BaseModel, Field

from yapi_mcp_server.cache.backoff import FetchBackoff
from yapi_mcp_server.cache.credentials import CredentialTable
from yapi_mcp_server.cache.store import PersistentCacheStore
from yapi_mcp_server.utils.common import (
    CategoryInfo,
    InterfaceDetail,
    InterfaceSummary,
    ProjectInfo,
    SaveInterfaceParams,
    SearchCriteria,
    SearchResult,
)
from yapi_mcp_server.utils.constants import DEFAULT_CACHE_TTL_MINUTES, DEFAULT_PAGE_LIMIT
from yapi_mcp_server.utils.errors import NotFound, Unauthorized, YApiError

if TYPE_CHECKING:
    from yapi_mcp_server.client.yapi_client import YApiClient

# Logger for this module
logger = logging.getLogger(__name__)


class CacheState(str, Enum):
    """Lifecycle of the in-memory project metadata."""

    COLD = "cold"
    WARM = "warm"
    REFRESHING = "refreshing"


class RefreshOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


class RefreshResult(BaseModel):
    """What a full refresh fetched and what it had to skip."""

    outcome: RefreshOutcome
    succeeded: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(
        default_factory=dict, description="Project id to error message"
    )
    categories_failed: Dict[str, str] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None


class ProjectMetadataCache:
    """
    Project and category metadata for every configured YApi project.

    Project info is kept in memory and mirrored to a durable snapshot;
    category lists are kept in memory only. Reads never wait for a full
    refresh: they answer from what is loaded and fetch a single missing
    project or category list on demand.
    """

    def __init__(
        self,
        credentials: CredentialTable,
        client: "YApiClient",
        store: PersistentCacheStore,
        ttl_minutes: float = DEFAULT_CACHE_TTL_MINUTES,
        backoff: Optional[FetchBackoff] = None,
    ):
        """
        Args:
            credentials: Token per project id; its keys are the projects to cache
            client: Client used for every backend call
            store: Durable snapshot of the project info map
            ttl_minutes: Age after which the snapshot is refreshed
            backoff: Backoff policy for on-demand fetches
        """
        self._credentials = credentials
        self._client = client
        self._store = store
        self.ttl_minutes = ttl_minutes
        self._backoff = backoff or FetchBackoff()

        self._project_info: Dict[str, ProjectInfo] = {}
        self._categories: Dict[str, List[CategoryInfo]] = {}
        self._state = CacheState.COLD
        self._refreshing = False
        self._refresh_task: Optional[asyncio.Task] = None
        self._initialized = False
        self.generation = 0
        self.last_refresh: Optional[RefreshResult] = None

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def is_refreshing(self) -> bool:
        task = self._refresh_task
        return self._refreshing or (task is not None and not task.done())

    def initialize(self) -> Optional[asyncio.Task]:
        """
        Load the snapshot, or start a background refresh when it is stale.

        Must be called from a running event loop. Never waits on the network.
        Only the first call does anything; later calls return None.

        Returns:
            The background refresh task if one was started, otherwise None
        """
        if self._initialized:
            logger.debug("Project metadata cache already initialized")
            return None
        self._initialized = True

        try:
            if self._store.is_expired(self.ttl_minutes):
                logger.info(
                    "Project info cache missing or older than %s minutes, refreshing in background",
                    self.ttl_minutes,
                )
                return self.trigger_refresh()

            snapshot = self._store.load()
            project_info = dict(snapshot.project_info_by_id) if snapshot else {}
            if not project_info:
                logger.warning("Project info cache is empty, refreshing in background")
                return self.trigger_refresh()

            self._project_info = project_info
            self._state = CacheState.WARM
            logger.info("Loaded %d project(s) from cache", len(project_info))
            return None
        except Exception:
            logger.exception("Failed to initialize project info cache, refreshing")
            return self.trigger_refresh()

    def trigger_refresh(self) -> Optional[asyncio.Task]:
        """
        Schedule :meth:`refresh_all` without waiting for it.

        Returns:
            The new task, or None if a refresh is already running
        """
        if self.is_refreshing:
            logger.debug("Refresh already in progress, not starting another")
            return None
        task = asyncio.get_running_loop().create_task(self.refresh_all())
        task.add_done_callback(self._on_refresh_done)
        self._refresh_task = task
        return task

    def _on_refresh_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.warning("Project metadata refresh was cancelled")
        elif task.exception() is not None:
            logger.error(
                "Project metadata refresh crashed: %s", task.exception(), exc_info=task.exception()
            )

    async def wait_for_refresh(self) -> Optional[RefreshResult]:
        """Wait for the background refresh, if any, and return the latest result."""
        task = self._refresh_task
        if task is not None and not task.done():
            await task
        return self.last_refresh

    async def refresh_all(self) -> RefreshResult:
        """
        Refetch project info and categories for every configured project.

        A project that fails keeps its previous entry; if every project
        fails, neither the in-memory map nor the snapshot is touched.

        Returns:
            RefreshResult describing the run
        """
        if self._refreshing:
            logger.debug("Refresh already in progress, skipping")
            return RefreshResult(outcome=RefreshOutcome.SKIPPED, finished_at=datetime.now())

        self._refreshing = True
        self._state = CacheState.REFRESHING
        result = RefreshResult(outcome=RefreshOutcome.FAILED)
        try:
            await self._refresh_projects(result)
        except Exception:
            logger.exception("Unexpected error while refreshing project metadata")
            result.outcome = RefreshOutcome.FAILED
        finally:
            self._refreshing = False
            self._state = CacheState.WARM if self._project_info else CacheState.COLD
            result.finished_at = datetime.now()
            self.last_refresh = result

        logger.info(
            "Project metadata refresh %s: %d ok, %d failed, %d category list(s) failed",
            result.outcome.value,
            len(result.succeeded),
            len(result.failed),
            len(result.categories_failed),
        )
        return result

    async def _refresh_projects(self, result: RefreshResult) -> None:
        project_ids = self._credentials.project_ids
        if not project_ids:
            logger.warning("No YApi project tokens configured, nothing to refresh")
            return

        fetched: Dict[str, ProjectInfo] = {}
        for project_id in project_ids:
            try:
                fetched[project_id] = await self._client.get_project_info(project_id)
            except YApiError as e:
                result.failed[project_id] = str(e)
                logger.warning("Failed to refresh project %s: %s", project_id, e)
            except Exception as e:
                result.failed[project_id] = str(e)
                logger.exception("Unexpected error refreshing project %s", project_id)

        if not fetched:
            logger.error(
                "Refresh failed for all %d project(s), keeping the current cache",
                len(project_ids),
            )
            return

        previous = self._project_info
        project_info: Dict[str, ProjectInfo] = {}
        for project_id in project_ids:
            if project_id in fetched:
                project_info[project_id] = fetched[project_id]
            elif project_id in previous:
                project_info[project_id] = previous[project_id]

        self._project_info = project_info
        self.generation += 1
        result.succeeded = list(fetched)
        for project_id in fetched:
            self._backoff.record_success(("project", project_id))
        self._store.save(project_info)

        categories: Dict[str, List[CategoryInfo]] = {}
        for project_id in project_info:
            try:
                categories[project_id] = await self._client.get_category_list(project_id)
                self._backoff.record_success(("categories", project_id))
            except YApiError as e:
                result.categories_failed[project_id] = str(e)
                logger.warning("Failed to refresh categories of project %s: %s", project_id, e)
            except Exception as e:
                result.categories_failed[project_id] = str(e)
                logger.exception("Unexpected error refreshing categories of %s", project_id)
        self._categories = categories

        if result.failed or result.categories_failed:
            result.outcome = RefreshOutcome.PARTIAL
        else:
            result.outcome = RefreshOutcome.SUCCESS

    async def _fetch_on_demand(self, key: tuple, fetch) -> Any:
        self._backoff.check(key)
        try:
            value = await fetch()
        except YApiError as e:
            self._backoff.record_failure(key, e)
            raise
        self._backoff.record_success(key)
        return value

    async def get_project_info(self, project_id: str) -> Optional[ProjectInfo]:
        """
        Return the project info, fetching it once if it is not cached.

        Returns:
            ProjectInfo, or None if no token is configured for the project

        Raises:
            YApiError: When the on-demand fetch fails
        """
        project_id = str(project_id)
        info = self._project_info.get(project_id)
        if info is not None:
            return info
        if project_id not in self._credentials:
            logger.debug("Project %s has no configured token", project_id)
            return None

        logger.info("Project %s not cached, fetching on demand", project_id)
        info = await self._fetch_on_demand(
            ("project", project_id),
            lambda: self._client.get_project_info(project_id),
        )
        self._project_info[project_id] = info
        if self._state == CacheState.COLD:
            self._state = CacheState.WARM
        return info

    def list_projects(self) -> List[ProjectInfo]:
        return list(self._project_info.values())

    async def _fetch_categories(self, project_id: str) -> List[CategoryInfo]:
        categories = await self._fetch_on_demand(
            ("categories", project_id),
            lambda: self._client.get_category_list(project_id),
        )
        self._categories[project_id] = categories
        return categories

    async def get_categories(self, project_id: str) -> Optional[List[CategoryInfo]]:
        """
        Return the category list of a project, fetching it once if needed.

        Returns:
            List of CategoryInfo, or None if no token is configured for the project
        """
        project_id = str(project_id)
        categories = self._categories.get(project_id)
        if categories is not None:
            return categories
        if project_id not in self._credentials:
            return None
        logger.info("Categories of project %s not cached, fetching on demand", project_id)
        return await self._fetch_categories(project_id)

    async def get_category_interfaces(
        self,
        project_id: str,
        category_id: str,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> List[InterfaceSummary]:
        """
        List the interfaces of a category after checking the category exists.

        A category missing from the cached list triggers one refetch of that
        project's categories, since it may have been created since. A category
        still missing after the refetch is backed off like a failed fetch.
        """
        project_id = str(project_id)
        category_id = str(category_id)
        if project_id not in self._credentials:
            raise Unauthorized(f"No token configured for project {project_id}")

        key = ("category", project_id, category_id)
        categories = self._categories.get(project_id)
        if categories is None or not _has_category(categories, category_id):
            self._backoff.check(key)
            categories = await self._fetch_categories(project_id)
        if not _has_category(categories, category_id):
            error = NotFound(f"Category {category_id} not found in project {project_id}")
            self._backoff.record_failure(key, error)
            raise error
        self._backoff.record_success(key)

        return await self._client.get_category_interfaces(
            project_id, category_id, page=page, limit=limit
        )

    async def get_interface(self, project_id: str, interface_id: str) -> InterfaceDetail:
        return await self._client.get_interface(interface_id, project_id=str(project_id))

    async def save_interface(self, params: SaveInterfaceParams) -> str:
        return await self._client.save_interface(params)

    async def search_interfaces(self, criteria: SearchCriteria) -> SearchResult:
        """
        Search interfaces, naming each hit's project and category from the cache.

        ``project_keyword`` is resolved against configured project ids and
        cached project names before any backend call.
        """
        if criteria.project_ids is None and criteria.project_keyword:
            project_ids = self._match_projects(criteria.project_keyword)
            if not project_ids:
                logger.info("No project matches '%s'", criteria.project_keyword)
                return SearchResult(total=0, items=[])
            criteria = criteria.model_copy(update={"project_ids": project_ids})

        result = await self._client.search_interfaces(criteria)

        category_names = {
            category.id: category.name
            for categories in self._categories.values()
            for category in categories
        }
        items = []
        for item in result.items:
            project = self._project_info.get(item.project_id or "")
            items.append(
                item.model_copy(
                    update={
                        "project_name": project.name if project else item.project_name,
                        "category_name": category_names.get(
                            item.category_id or "", item.category_name
                        ),
                    }
                )
            )
        return SearchResult(total=result.total, items=items)

    def _match_projects(self, keyword: str) -> List[str]:
        keyword = keyword.strip().lower()
        matches = []
        for project_id in self._credentials.project_ids:
            info = self._project_info.get(project_id)
            if keyword == project_id.lower() or (info and keyword in info.name.lower()):
                matches.append(project_id)
        return matches

    def clear_cache(self, refresh: bool = True) -> Optional[asyncio.Task]:
        """
        Delete the snapshot and forget everything held in memory.

        Args:
            refresh: Start a background refresh afterwards

        Returns:
            The refresh task if one was started, otherwise None
        """
        self._store.clear()
        self._project_info = {}
        self._categories = {}
        self._backoff.reset()
        if not self._refreshing:
            self._state = CacheState.COLD
        logger.info("Project metadata cache cleared")
        return self.trigger_refresh() if refresh else None

    def status(self) -> Dict[str, Any]:
        """Summary of the cache for operators."""
        return {
            "state": self._state.value,
            "generation": self.generation,
            "refreshing": self.is_refreshing,
            "configured_projects": len(self._credentials),
            "cached_projects": len(self._project_info),
            "projects_with_categories": len(self._categories),
            "ttl_minutes": self.ttl_minutes,
            "cache_file": str(self._store.path),
            "last_refresh": (
                self.last_refresh.model_dump(mode="json") if self.last_refresh else None
            ),
        }


def _has_category(categories: List[CategoryInfo], category_id: str) -> bool:
    return any(category.id == category_id for category in categories)
