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
from typing import Any, Dict, List, Optional, Union

from mcp.server.fastmcp import FastMCP
from pydantic import ValidationError

from yapi_mcp_server.cache.project_cache import ProjectMetadataCache
from yapi_mcp_server.utils.common import (
    InterfaceDetail,
    SaveInterfaceParams,
    SearchCriteria,
    SearchResult,
    ToolError,
    tool_error_from_exception,
    tool_error_from_unexpected,
)
from yapi_mcp_server.utils.constants import DEFAULT_SEARCH_LIMIT
from yapi_mcp_server.utils.errors import YApiError

# Logger for this module
logger = logging.getLogger(__name__)


def _invalid_input(method_name: str, e: ValidationError) -> ToolError:
    problems = [
        f"{'.'.join(str(part) for part in error['loc']) or 'input'}: {error['msg']}"
        for error in e.errors()
    ]
    return ToolError(
        message=f"{method_name} failed: invalid input. {'; '.join(problems)}",
        suggestions=["Correct the listed parameters and call the tool again"],
    )


def register_interface_tools(
    mcp: FastMCP, metadata_cache: ProjectMetadataCache
) -> None:
    """
    Register interface read, write and search tools with the MCP server.

    Args:
        mcp: The FastMCP instance to register tools with
        metadata_cache: The project metadata cache shared by all tools
    """

    @mcp.tool(
        name="yapi_get_api_desc",
    )
    async def yapi_get_api_desc(
        project_id: str, api_id: str
    ) -> Union[InterfaceDetail, ToolError]:
        """
        Get the full definition of a YApi interface: path, method, request
        parameters, headers, body and response schema.

        :param project_id: The project id; for /project/1/interface/api/66 it is 1
        :param api_id: The interface id; for /project/1/interface/api/66 it is 66

        :returns: The interface definition, or a ToolError
        """
        method_name = "yapi_get_api_desc"
        try:
            interface = await metadata_cache.get_interface(project_id, api_id)
            logger.info("Fetched interface %s: %s", api_id, interface.title)
            return interface
        except YApiError as e:
            return tool_error_from_exception(method_name, e)
        except Exception as e:
            return tool_error_from_unexpected(method_name, e)

    @mcp.tool(
        name="yapi_save_api",
    )
    async def yapi_save_api(
        project_id: str,
        title: str,
        path: str,
        method: str,
        category_id: Optional[str] = None,
        id: Optional[str] = None,
        req_params: Optional[List[Dict[str, Any]]] = None,
        req_query: Optional[List[Dict[str, Any]]] = None,
        req_headers: Optional[List[Dict[str, Any]]] = None,
        req_body_type: Optional[str] = None,
        req_body_form: Optional[List[Dict[str, Any]]] = None,
        req_body_other: Optional[str] = None,
        res_body_type: Optional[str] = None,
        res_body: Optional[str] = None,
        description: Optional[str] = None,
        markdown: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Union[Dict[str, str], ToolError]:
        """
        Create a new YApi interface or update an existing one.

        IMPORTANT: Pass `id` only to update an existing interface. Without `id`
        a new interface is created, and `category_id` is then required; use
        yapi_get_categories to find it.

        :param project_id: The project id
        :param title: The interface name
        :param path: The request path, starting with '/'
        :param method: The HTTP method (GET, POST, PUT, DELETE, PATCH, HEAD, OPTIONS)
        :param category_id: The category to create the interface in
        :param id: The id of the interface to update
        :param req_params: Path parameters, e.g. [{"name": "id", "desc": "user id"}]
        :param req_query: Query parameters, e.g. [{"name": "page", "required": "1"}]
        :param req_headers: Request headers, e.g. [{"name": "Content-Type", "value": "application/json"}]
        :param req_body_type: Request body type: form, json, file or raw
        :param req_body_form: Form fields when req_body_type is form
        :param req_body_other: JSON schema or raw body when req_body_type is json or raw
        :param res_body_type: Response body type: json or raw
        :param res_body: Response JSON schema or raw example
        :param description: Interface description
        :param markdown: Interface documentation in markdown
        :param tags: Tags for the interface

        :returns: The id of the saved interface and whether it was created or updated, or a ToolError
        """
        method_name = "yapi_save_api"
        try:
            params = SaveInterfaceParams(
                id=id,
                project_id=project_id,
                category_id=category_id,
                title=title,
                path=path,
                method=method,
                req_params=req_params,
                req_query=req_query,
                req_headers=req_headers,
                req_body_type=req_body_type,
                req_body_form=req_body_form,
                req_body_other=req_body_other,
                res_body_type=res_body_type,
                res_body=res_body,
                description=description,
                markdown=markdown,
                tags=tags,
            )
        except ValidationError as e:
            return _invalid_input(method_name, e)

        try:
            interface_id = await metadata_cache.save_interface(params)
        except YApiError as e:
            return tool_error_from_exception(method_name, e)
        except Exception as e:
            return tool_error_from_unexpected(method_name, e)

        action = "updated" if params.is_update else "created"
        logger.info("Interface %s %s in project %s", interface_id, action, project_id)
        return {"id": interface_id, "action": action}

    @mcp.tool(
        name="yapi_search_apis",
    )
    async def yapi_search_apis(
        project_keyword: Optional[str] = None,
        name_keyword: Optional[str] = None,
        path_keyword: Optional[str] = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> Union[SearchResult, ToolError]:
        """
        Search interfaces across the configured YApi projects.

        At least one keyword is required. Keywords match case-insensitively
        as substrings.

        :param project_keyword: A project id or part of a project name to restrict the search
        :param name_keyword: Part of the interface title
        :param path_keyword: Part of the interface path, e.g. /user
        :param limit: Maximum number of results, 1 to 100

        :returns: The total number of matches and the first `limit` interfaces with their project and category names, or a ToolError
        """
        method_name = "yapi_search_apis"
        try:
            criteria = SearchCriteria(
                project_keyword=project_keyword,
                name_keyword=name_keyword,
                path_keyword=path_keyword,
                limit=limit,
            )
        except ValidationError as e:
            return _invalid_input(method_name, e)

        try:
            return await metadata_cache.search_interfaces(criteria)
        except YApiError as e:
            return tool_error_from_exception(method_name, e)
        except Exception as e:
            return tool_error_from_unexpected(method_name, e)
