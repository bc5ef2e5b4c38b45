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

"""
Utilities module for the YApi MCP server.

This module provides the shared data model, error types and constants.
"""

from .common import (
    ToolError,
    tool_error_from_exception,
    tool_error_from_unexpected,
    ProjectInfo,
    CategoryInfo,
    InterfaceSummary,
    InterfaceDetail,
    SaveInterfaceParams,
    SearchCriteria,
    SearchResultItem,
    SearchResult,
)
from .errors import (
    YApiError,
    Unauthorized,
    NotFound,
    RemoteError,
    TransportError,
    StorageError,
    ConfigurationError,
)

# Import commonly used constants for convenience
from .constants import (
    CACHE_SCHEMA_VERSION,
    DEFAULT_CACHE_TTL_MINUTES,
    TRACEBACK_LIMIT,
)

__all__ = [
    "ToolError",
    "tool_error_from_exception",
    "tool_error_from_unexpected",
    "ProjectInfo",
    "CategoryInfo",
    "InterfaceSummary",
    "InterfaceDetail",
    "SaveInterfaceParams",
    "SearchCriteria",
    "SearchResultItem",
    "SearchResult",
    "YApiError",
    "Unauthorized",
    "NotFound",
    "RemoteError",
    "TransportError",
    "StorageError",
    "ConfigurationError",
    # Constants
    "CACHE_SCHEMA_VERSION",
    "DEFAULT_CACHE_TTL_MINUTES",
    "TRACEBACK_LIMIT",
]
