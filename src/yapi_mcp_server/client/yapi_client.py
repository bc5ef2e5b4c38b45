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
import ssl
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar, Union

import aiohttp
import truststore
from pydantic import BaseModel, ValidationError

from yapi_mcp_server.cache.credentials import CredentialTable, mask_token
from yapi_mcp_server.utils.common import (
    CategoryInfo,
    InterfaceDetail,
    InterfaceSummary,
    ProjectInfo,
    SaveInterfaceParams,
    SearchCriteria,
    SearchResult,
    SearchResultItem,
)
from yapi_mcp_server.utils.constants import (
    CATEGORY_INTERFACES_ENDPOINT,
    CATEGORY_MENU_ENDPOINT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PAGE_LIMIT,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_RETRY_DELAY,
    ERRCODE_OK,
    ERRCODE_UNAUTHORIZED,
    INTERFACE_ADD_ENDPOINT,
    INTERFACE_GET_ENDPOINT,
    INTERFACE_LIST_ENDPOINT,
    INTERFACE_UPDATE_ENDPOINT,
    PROJECT_GET_ENDPOINT,
    SEARCH_PAGE_LIMIT,
)
from yapi_mcp_server.utils.errors import (
    NotFound,
    RemoteError,
    TransportError,
    Unauthorized,
    YApiError,
)

# Logger for this module
logger = logging.getLogger("YApiClient")

ModelT = TypeVar("ModelT", bound=BaseModel)


class YApiClient:
    """
    A service class to handle all communications with the YApi open API.

    Every call is addressed to a project and authenticated with that
    project's token, which YApi expects as a ``token`` request parameter.
    """

    def __init__(
        self,
        base_url: str,
        credentials: CredentialTable,
        ssl_enabled: Union[bool, str] = True,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        pool_connections: int = 100,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initializes the YApi client with connection details.

        Args:
            base_url: The YApi server URL, e.g. http://yapi.example.com
            credentials: Token per project id
            ssl_enabled: Whether to verify server certificates (bool) or path to a CA file (str)
            timeout: Total timeout of one request in seconds
            max_retries: Retries after a network failure or timeout
            retry_delay: Initial delay between retries in seconds
            pool_connections: Maximum number of pooled connections
            session: Optional pre-built session; the client will not close it
        """
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.ssl_enabled = ssl_enabled
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.pool_connections = pool_connections

        self._session = session
        self._owns_session = session is None
        self._connector = None
        self._ssl_context = None
        logger.info("Initialized YApiClient for %s", self.base_url)

    def _get_ssl_context(self) -> ssl.SSLContext:
        """
        Get or create the SSL context used by the connector.

        The system trust store is used through ``truststore``; when
        ``ssl_enabled`` is a path, that CA file is trusted as well.
        """
        if self._ssl_context is None:
            try:
                context = truststore.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
                logger.debug("Created SSL context using system truststore")
            except Exception as e:
                logger.error("Failed to create truststore SSL context: %s", str(e))
                context = ssl.create_default_context()
                logger.debug("Created default SSL context")

            if isinstance(self.ssl_enabled, str):
                try:
                    context.load_verify_locations(cafile=self.ssl_enabled)
                    logger.debug(
                        "Added certificate file to context: %s", self.ssl_enabled
                    )
                except Exception as e:
                    logger.error(
                        "Failed to add certificate file %s to context: %s",
                        self.ssl_enabled,
                        str(e),
                    )
            self._ssl_context = context
        return self._ssl_context

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            if self._connector is None or self._connector.closed:
                ssl_option: Union[bool, ssl.SSLContext] = (
                    False if self.ssl_enabled is False else self._get_ssl_context()
                )
                self._connector = aiohttp.TCPConnector(
                    limit=self.pool_connections,
                    enable_cleanup_closed=True,
                    ssl=ssl_option,
                )
                logger.debug("Created TCP connector (limit=%d)", self.pool_connections)
            self._session = aiohttp.ClientSession(connector=self._connector)
            self._owns_session = True
        return self._session

    async def close(self):
        """Close the aiohttp session and connector if this client created them."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        if self._connector and not self._connector.closed:
            await self._connector.close()
        self._session = None
        self._connector = None
        logger.info("YApi client session closed")

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _resolve_token(self, project_id: str) -> str:
        token = self.credentials.lookup(project_id)
        if not token:
            raise Unauthorized(f"No token configured for project {project_id}")
        return token

    async def _request(
        self,
        method: str,
        endpoint: str,
        token: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Send one request and return the ``data`` member of the YApi envelope.

        Network failures and timeouts are retried with exponential backoff;
        answers from the server, including error codes, are not.

        Raises:
            Unauthorized, NotFound, RemoteError, TransportError
        """
        url = f"{self.base_url}{endpoint}"
        request_kwargs: Dict[str, Any] = {
            "timeout": aiohttp.ClientTimeout(total=self.timeout)
        }
        if method == "GET":
            request_kwargs["params"] = {**(params or {}), "token": token}
        else:
            request_kwargs["params"] = params or {}
            request_kwargs["json"] = {**(payload or {}), "token": token}

        logger.debug("%s %s (token %s)", method, url, mask_token(token))
        session = await self._ensure_session()

        retries = 0
        while True:
            try:
                async with session.request(method, url, **request_kwargs) as response:
                    if response.status in (401, 403):
                        raise Unauthorized(
                            f"{endpoint} rejected the token (HTTP {response.status})"
                        )
                    if response.status == 404:
                        raise NotFound(f"{endpoint} returned HTTP 404")
                    if response.status != 200:
                        text = await response.text()
                        raise RemoteError(
                            f"{endpoint} failed with HTTP {response.status}: {text[:200]}"
                        )
                    try:
                        body = await response.json(content_type=None)
                    except ValueError as e:
                        raise RemoteError(f"{endpoint} returned invalid JSON: {e}")
                break
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                retries += 1
                if retries > self.max_retries:
                    logger.error(
                        "%s %s failed after %d retries: %s",
                        method,
                        endpoint,
                        self.max_retries,
                        type(e).__name__,
                    )
                    raise TransportError(
                        f"{method} {endpoint} failed: {type(e).__name__} {e}".rstrip()
                    ) from e
                delay = self.retry_delay * (2 ** (retries - 1))
                logger.warning(
                    "Request failed: %s. Retrying in %.2fs (%d/%d)",
                    type(e).__name__,
                    delay,
                    retries,
                    self.max_retries,
                )
                await asyncio.sleep(delay)

        return self._unwrap(endpoint, body)

    @staticmethod
    def _unwrap(endpoint: str, body: Any) -> Any:
        if not isinstance(body, dict) or "errcode" not in body:
            raise RemoteError(f"{endpoint} returned an unexpected payload")
        errcode = body.get("errcode")
        errmsg = body.get("errmsg") or "unknown error"
        if errcode == ERRCODE_UNAUTHORIZED:
            raise Unauthorized(f"{endpoint}: {errmsg}")
        if errcode != ERRCODE_OK:
            raise RemoteError(f"{endpoint}: {errmsg}", errcode=errcode)
        return body.get("data")

    async def get_project_info(self, project_id: str) -> ProjectInfo:
        """
        Fetch the project bound to the configured token of ``project_id``.

        Returns:
            ProjectInfo for the project
        """
        token = self._resolve_token(project_id)
        data = await self._request("GET", PROJECT_GET_ENDPOINT, token)
        if not data:
            raise NotFound(f"Project {project_id} not found")
        info = _parse_one(PROJECT_GET_ENDPOINT, ProjectInfo, data)
        if info.id != str(project_id):
            logger.warning(
                "Token configured for project %s belongs to project %s",
                project_id,
                info.id,
            )
        return info

    async def get_category_list(self, project_id: str) -> List[CategoryInfo]:
        token = self._resolve_token(project_id)
        data = await self._request(
            "GET", CATEGORY_MENU_ENDPOINT, token, params={"project_id": project_id}
        )
        return _parse_list(CATEGORY_MENU_ENDPOINT, CategoryInfo, data, project_id=project_id)

    async def get_category_interfaces(
        self,
        project_id: str,
        category_id: str,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> List[InterfaceSummary]:
        token = self._resolve_token(project_id)
        data = await self._request(
            "GET",
            CATEGORY_INTERFACES_ENDPOINT,
            token,
            params={"catid": category_id, "page": page, "limit": limit},
        )
        page = _page(CATEGORY_INTERFACES_ENDPOINT, data)
        return _parse_list(CATEGORY_INTERFACES_ENDPOINT, InterfaceSummary, page.get("list"))

    async def get_interface(
        self,
        interface_id: str,
        project_id: Optional[str] = None,
        token: Optional[str] = None,
    ) -> InterfaceDetail:
        """
        Fetch one interface.

        Args:
            interface_id: The interface id, e.g. 66 for /project/1/interface/api/66
            project_id: Project whose token authenticates the call
            token: Token to use directly instead of looking one up
        """
        if token is None:
            if project_id is None:
                raise Unauthorized("Either project_id or token is required")
            token = self._resolve_token(project_id)
        data = await self._request(
            "GET", INTERFACE_GET_ENDPOINT, token, params={"id": interface_id}
        )
        if not data:
            raise NotFound(f"Interface {interface_id} not found")
        return _parse_one(INTERFACE_GET_ENDPOINT, InterfaceDetail, data)

    async def save_interface(self, params: SaveInterfaceParams) -> str:
        """
        Create or update an interface.

        Returns:
            The id of the saved interface
        """
        token = self._resolve_token(params.project_id)
        endpoint = INTERFACE_UPDATE_ENDPOINT if params.is_update else INTERFACE_ADD_ENDPOINT
        data = await self._request(
            "POST", endpoint, token, payload=params.to_backend_payload()
        )
        if params.is_update:
            return str(params.id)
        if not isinstance(data, dict) or "_id" not in data:
            raise RemoteError(f"{endpoint} did not return the new interface id")
        return str(data["_id"])

    async def list_interfaces(
        self, project_id: str, page: int = 1, limit: int = SEARCH_PAGE_LIMIT
    ) -> Tuple[int, List[InterfaceSummary]]:
        token = self._resolve_token(project_id)
        data = await self._request(
            "GET",
            INTERFACE_LIST_ENDPOINT,
            token,
            params={"project_id": project_id, "page": page, "limit": limit},
        )
        page = _page(INTERFACE_LIST_ENDPOINT, data)
        items = _parse_list(INTERFACE_LIST_ENDPOINT, InterfaceSummary, page.get("list"))
        try:
            total = int(page.get("total", len(items)))
        except (TypeError, ValueError) as e:
            raise RemoteError(f"{INTERFACE_LIST_ENDPOINT} returned an invalid total") from e
        return total, items

    async def search_interfaces(self, criteria: SearchCriteria) -> SearchResult:
        """
        Search interfaces by title and path across projects.

        YApi's token API has no search endpoint, so each project's interface
        list is fetched and filtered here. A project that fails is skipped.
        """
        project_ids = criteria.project_ids
        if project_ids is None:
            project_ids = self.credentials.project_ids

        matches: List[SearchResultItem] = []
        for project_id in project_ids:
            try:
                _, interfaces = await self.list_interfaces(project_id)
            except YApiError as e:
                logger.warning("Skipping project %s in search: %s", project_id, e)
                continue
            for interface in interfaces:
                if criteria.matches(interface):
                    item = interface.model_dump()
                    item["project_id"] = interface.project_id or project_id
                    matches.append(SearchResultItem.model_validate(item))

        return SearchResult(total=len(matches), items=matches[: criteria.limit])


def _parse_one(endpoint: str, model: Type[ModelT], data: Any) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise RemoteError(
            f"{endpoint} returned an unexpected payload: {e.error_count()} invalid field(s)"
        ) from e


def _parse_list(
    endpoint: str, model: Type[ModelT], items: Any, **extra: Any
) -> List[ModelT]:
    """Validate a list payload, adding ``extra`` fields to every item."""
    if items is None:
        return []
    if not isinstance(items, list):
        raise RemoteError(
            f"{endpoint} returned {type(items).__name__} where a list was expected"
        )
    try:
        return [model.model_validate({**extra, **item}) for item in items]
    except (ValidationError, TypeError) as e:
        raise RemoteError(f"{endpoint} returned an unexpected list item: {e}") from e


def _page(endpoint: str, data: Any) -> Dict[str, Any]:
    # Paged endpoints wrap their items as {"count", "total", "list"}.
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise RemoteError(
            f"{endpoint} returned {type(data).__name__} where a page was expected"
        )
    return data
