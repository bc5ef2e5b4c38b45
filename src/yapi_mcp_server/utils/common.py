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
import traceback
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .constants import DEFAULT_SEARCH_LIMIT, MAX_SEARCH_LIMIT, TRACEBACK_LIMIT
from .errors import NotFound, RemoteError, TransportError, Unauthorized, YApiError

logger = logging.getLogger(__name__)

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")


def _coerce_id(value: Any) -> Any:
    # YApi returns numeric ids for projects and mixed types elsewhere.
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return str(int(value))
    return value


YApiId = Annotated[str, BeforeValidator(_coerce_id)]


class ToolError(BaseModel):
    """
    Represents an error response from a tool execution.

    This class helps the LLM understand error messages and provides suggestions
    for potential resolutions.
    """

    isError: Literal[True] = Field(
        default=True,
        description="Indicates that an error occurred during tool execution if value is True",
    )

    message: str = Field(description="Detailed error message")

    suggestions: List[str] = Field(
        default_factory=list, description="List of suggestions for resolving the error"
    )


class YApiModel(BaseModel):
    """Base for models parsed from backend payloads, keyed by YApi field names."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ProjectInfo(YApiModel):
    """A YApi project as returned by the project endpoint."""

    id: YApiId = Field(alias="_id", description="The project identifier")
    name: str = Field(default="", description="The project name")
    description: Optional[str] = Field(
        default="", alias="desc", description="Free text describing the project"
    )
    base_path: Optional[str] = Field(
        default="", alias="basepath", description="Path prefix shared by all interfaces"
    )
    group_id: Optional[YApiId] = Field(
        default=None, description="The group the project belongs to"
    )
    owner_id: Optional[YApiId] = Field(
        default=None, alias="uid", description="User id of the project creator"
    )


class CategoryInfo(YApiModel):
    """An interface category inside a project."""

    id: YApiId = Field(alias="_id", description="The category identifier")
    project_id: YApiId = Field(description="The project owning this category")
    name: str = Field(default="", description="The category name")
    description: Optional[str] = Field(default="", alias="desc")
    created_at: Optional[int] = Field(
        default=None, alias="add_time", description="Creation time, epoch seconds"
    )
    updated_at: Optional[int] = Field(
        default=None, alias="up_time", description="Last update time, epoch seconds"
    )
    sort_index: Optional[int] = Field(
        default=0, alias="index", description="Position of the category in the menu"
    )


class InterfaceSummary(YApiModel):
    """The listing form of an interface."""

    id: YApiId = Field(alias="_id", description="The interface identifier")
    title: str = Field(default="", description="The interface name")
    path: str = Field(default="", description="The request path")
    method: str = Field(default="GET", description="The HTTP method")
    project_id: Optional[YApiId] = Field(default=None)
    category_id: Optional[YApiId] = Field(default=None, alias="catid")
    status: Optional[str] = Field(default=None, description="done or undone")
    created_at: Optional[int] = Field(default=None, alias="add_time")
    updated_at: Optional[int] = Field(default=None, alias="up_time")


class InterfaceDetail(InterfaceSummary):
    """An interface with its request and response definitions."""

    description: Optional[str] = Field(default="", alias="desc")
    markdown: Optional[str] = Field(default="")
    req_params: List[Dict[str, Any]] = Field(default_factory=list)
    req_query: List[Dict[str, Any]] = Field(default_factory=list)
    req_headers: List[Dict[str, Any]] = Field(default_factory=list)
    req_body_type: Optional[str] = Field(default=None)
    req_body_form: List[Dict[str, Any]] = Field(default_factory=list)
    req_body_other: Optional[str] = Field(default=None)
    res_body_type: Optional[str] = Field(default=None)
    res_body: Optional[str] = Field(default=None)
    tags: List[str] = Field(default_factory=list, alias="tag")


class SaveInterfaceParams(YApiModel):
    """
    Parameters for creating or updating an interface.

    The presence of ``id`` selects an update; without it a new interface is
    created in ``category_id``.
    """

    id: Optional[YApiId] = Field(
        default=None, description="Interface id. Set it to update, omit it to create"
    )
    project_id: YApiId = Field(description="The project owning the interface")
    category_id: Optional[YApiId] = Field(
        default=None, alias="catid", description="Category id, required when creating"
    )
    title: str = Field(min_length=1, description="The interface name")
    path: str = Field(description="The request path, starting with '/'")
    method: str = Field(default="GET", description="The HTTP method")
    req_params: Optional[List[Dict[str, Any]]] = None
    req_query: Optional[List[Dict[str, Any]]] = None
    req_headers: Optional[List[Dict[str, Any]]] = None
    req_body_type: Optional[str] = None
    req_body_form: Optional[List[Dict[str, Any]]] = None
    req_body_other: Optional[str] = None
    res_body_type: Optional[str] = None
    res_body: Optional[str] = None
    description: Optional[str] = Field(default=None, alias="desc")
    markdown: Optional[str] = None
    tags: Optional[List[str]] = Field(default=None, alias="tag")
    switch_notice: Optional[bool] = None
    api_opened: Optional[bool] = None

    @field_validator("path")
    @classmethod
    def _check_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("path must start with '/'")
        return value

    @field_validator("method")
    @classmethod
    def _check_method(cls, value: str) -> str:
        method = value.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"method must be one of {', '.join(HTTP_METHODS)}")
        return method

    @model_validator(mode="after")
    def _check_category_for_create(self) -> "SaveInterfaceParams":
        if self.id is None and self.category_id is None:
            raise ValueError("category_id is required when creating an interface")
        return self

    @property
    def is_update(self) -> bool:
        return self.id is not None

    def to_backend_payload(self) -> Dict[str, Any]:
        """Serialize with YApi field names, leaving out unset values."""
        return self.model_dump(by_alias=True, exclude_none=True)


class SearchCriteria(BaseModel):
    """Filters for an interface search across projects."""

    project_keyword: Optional[str] = Field(
        default=None, description="Matches a project id or part of a project name"
    )
    name_keyword: Optional[str] = Field(
        default=None, description="Part of the interface title"
    )
    path_keyword: Optional[str] = Field(
        default=None, description="Part of the interface path"
    )
    project_ids: Optional[List[YApiId]] = Field(
        default=None, description="Restrict the search to these projects"
    )
    limit: int = Field(default=DEFAULT_SEARCH_LIMIT, ge=1, le=MAX_SEARCH_LIMIT)

    @model_validator(mode="after")
    def _check_keywords(self) -> "SearchCriteria":
        if not (self.project_keyword or self.name_keyword or self.path_keyword):
            raise ValueError(
                "at least one of project_keyword, name_keyword or path_keyword is required"
            )
        return self

    def matches(self, interface: InterfaceSummary) -> bool:
        if self.name_keyword and self.name_keyword.lower() not in interface.title.lower():
            return False
        if self.path_keyword and self.path_keyword.lower() not in interface.path.lower():
            return False
        return True


class SearchResultItem(InterfaceSummary):
    project_name: Optional[str] = None
    category_name: Optional[str] = None


class SearchResult(BaseModel):
    total: int = Field(description="Number of matching interfaces before the limit")
    items: List[SearchResultItem] = Field(default_factory=list)


_ERROR_SUGGESTIONS = {
    Unauthorized: [
        "Check that YAPI_TOKEN contains a token for this project as projectId:token",
        "Use yapi_list_projects to see the configured projects",
    ],
    NotFound: [
        "Verify the id is correct",
        "Use yapi_get_categories or yapi_search_apis to find valid ids",
    ],
    RemoteError: ["Check the parameters against the YApi project settings"],
    TransportError: [
        "Check that YAPI_BASE_URL is reachable from the server",
        "Retry the request later",
    ],
}


def tool_error_from_exception(method_name: str, e: YApiError) -> ToolError:
    """Build the ToolError a tool returns for a failed backend call."""
    return ToolError(
        message=f"{method_name} failed: {e.message}",
        suggestions=_ERROR_SUGGESTIONS.get(type(e), []),
    )


def tool_error_from_unexpected(method_name: str, e: Exception) -> ToolError:
    """Log an unexpected tool failure with its traceback and wrap it as a ToolError."""
    error_traceback = traceback.format_exc(limit=TRACEBACK_LIMIT)
    logger.error(
        f"{method_name} failed: {e.__class__.__name__} - {str(e)}\n{error_traceback}"
    )
    return ToolError(
        message=f"{method_name} failed: got err {e}. Trace available in server logs.",
    )
