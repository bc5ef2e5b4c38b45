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

import logging
from typing import Any, Dict, List, Union

from mcp.server.fastmcp import FastMCP

from yapi_mcp_server.cache.project_cache import ProjectMetadataCache
from yapi_mcp_server.utils.common import (
    CategoryInfo,
    InterfaceSummary,
    ProjectInfo,
    ToolError,
    tool_error_from_exception,
    tool_error_from_unexpected,
)
from yapi_mcp_server.utils.constants import DEFAULT_PAGE_LIMIT
from yapi_mcp_server.utils.errors import YApiError

# Logger for this module
logger = logging.getLogger(__name__)


def register_project_tools(mcp: FastMCP, metadata_cache: ProjectMetadataCache) -> None:
    """
    Register project, category and cache tools with the MCP server.

    Args:
        mcp: The FastMCP instance to register tools with
        metadata_cache: The project metadata cache shared by all tools
    """

    @mcp.tool(
        name="yapi_list_projects",
    )
    def yapi_list_projects() -> Union[List[ProjectInfo], ToolError]:
        """
        List the YApi projects this server has tokens for, with their names.

        The list comes from the project cache. Right after startup it can be
        empty while the cache is still being filled; try again shortly.

        :returns: A list of projects (id, name, description, base path)
        """
        projects = metadata_cache.list_projects()
        if not projects and metadata_cache.is_refreshing:
            return ToolError(
                message="Project information is still loading",
                suggestions=["Call yapi_list_projects again in a few seconds"],
            )
        return projects

    @mcp.tool(
        name="yapi_get_categories",
    )
    async def yapi_get_categories(
        project_id: str,
    ) -> Union[List[CategoryInfo], ToolError]:
        """
        Get the interface categories of a YApi project.

        :param project_id: The project id, as listed by yapi_list_projects

        :returns: The categories of the project, or a ToolError
        """
        method_name = "yapi_get_categories"
        try:
            categories = await metadata_cache.get_categories(project_id)
        except YApiError as e:
            return tool_error_from_exception(method_name, e)
        except Exception as e:
            return tool_error_from_unexpected(method_name, e)

        if categories is None:
            return ToolError(
                message=f"{method_name} failed: no token configured for project {project_id}",
                suggestions=["Use yapi_list_projects to see the configured projects"],
            )
        return categories

    @mcp.tool(
        name="yapi_get_category_interfaces",
    )
    async def yapi_get_category_interfaces(
        project_id: str,
        category_id: str,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> Union[List[InterfaceSummary], ToolError]:
        """
        List the interfaces filed under one category of a project.

        :param project_id: The project id
        :param category_id: The category id, as returned by yapi_get_categories
        :param page: Page number, starting at 1
        :param limit: Interfaces per page

        :returns: The interfaces in the category (id, title, method, path), or a ToolError
        """
        method_name = "yapi_get_category_interfaces"
        try:
            return await metadata_cache.get_category_interfaces(
                project_id, category_id, page=page, limit=limit
            )
        except YApiError as e:
            return tool_error_from_exception(method_name, e)
        except Exception as e:
            return tool_error_from_unexpected(method_name, e)

    @mcp.tool(
        name="yapi_cache_status",
    )
    def yapi_cache_status() -> Dict[str, Any]:
        """
        Report the state of the project cache: cold, warm or refreshing, how
        many projects are cached, and the result of the last refresh.
        """
        return metadata_cache.status()

    @mcp.tool(
        name="yapi_clear_cache",
    )
    async def yapi_clear_cache(refresh: bool = True) -> Dict[str, Any]:
        """
        Delete the cached project information so it is fetched again from YApi.

        Only use this when the user asks to reset the cache or project
        information is known to be outdated.

        :param refresh: Start reloading the cache in the background right away

        :returns: The cache status after clearing
        """
        metadata_cache.clear_cache(refresh=refresh)
        return metadata_cache.status()
