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
Constants used across the MCP server.

This module centralizes endpoint paths, defaults and backend error codes
so the client, the cache and the tools agree on them.

Constants are organized by category for easy navigation and maintenance.
"""

# ============================================================================
# YAPI ENDPOINTS
# ============================================================================

PROJECT_GET_ENDPOINT = "/api/project/get"
"""Returns the project bound to the supplied token."""

CATEGORY_MENU_ENDPOINT = "/api/interface/getCatMenu"
"""Lists the interface categories of a project."""

CATEGORY_INTERFACES_ENDPOINT = "/api/interface/list_cat"
"""Lists the interfaces filed under one category."""

INTERFACE_GET_ENDPOINT = "/api/interface/get"
"""Returns one interface with its request and response definitions."""

INTERFACE_LIST_ENDPOINT = "/api/interface/list"
"""Lists every interface of a project, paginated."""

INTERFACE_ADD_ENDPOINT = "/api/interface/add"
"""Creates an interface."""

INTERFACE_UPDATE_ENDPOINT = "/api/interface/up"
"""Updates an existing interface."""


# ============================================================================
# BACKEND ERROR CODES
# ============================================================================

ERRCODE_OK = 0
"""Application level success code."""

ERRCODE_UNAUTHORIZED = 40011
"""Returned when the token is missing or invalid."""


# ============================================================================
# CACHE SETTINGS
# ============================================================================

CACHE_SCHEMA_VERSION = 1
"""Snapshots written with any other version are treated as absent."""

DEFAULT_CACHE_DIR = ".yapi-cache"
"""Directory, relative to the working directory, holding the snapshot."""

CACHE_FILE_NAME = "project-info.json"

DEFAULT_CACHE_TTL_MINUTES = 360
"""Six hours; long-lived deployments keep project metadata this long."""

BACKOFF_BASE_DELAY_SECONDS = 5.0
BACKOFF_MAX_DELAY_SECONDS = 300.0


# ============================================================================
# CLIENT SETTINGS
# ============================================================================

DEFAULT_BASE_URL = "http://localhost:3000"
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_DELAY = 1.0

DEFAULT_PAGE_LIMIT = 50
"""Page size used when listing the interfaces of a category."""

SEARCH_PAGE_LIMIT = 1000
"""Page size used when listing a project's interfaces for search."""

DEFAULT_SEARCH_LIMIT = 20
MAX_SEARCH_LIMIT = 100


# ============================================================================
# SERVER SETTINGS
# ============================================================================

SERVER_NAME = "yapi"
DEFAULT_TRANSPORT = "stdio"
SUPPORTED_TRANSPORTS = ("stdio", "sse", "streamable-http")
DEFAULT_PORT = 3388

TOKEN_MASK_VISIBLE_CHARS = 4
"""Trailing characters of a token left visible in log output."""

TRACEBACK_LIMIT = 5
"""Frames included when logging a tool failure."""
