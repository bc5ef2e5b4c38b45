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
Cache module for the YApi MCP server.

This module provides the credential table, the durable snapshot store and
the project metadata cache built on top of them.
"""

from .credentials import CredentialTable, mask_token
from .store import CacheSnapshot, PersistentCacheStore
from .backoff import FetchBackoff
from .project_cache import (
    CacheState,
    ProjectMetadataCache,
    RefreshOutcome,
    RefreshResult,
)

__all__ = [
    "CredentialTable",
    "mask_token",
    "CacheSnapshot",
    "PersistentCacheStore",
    "FetchBackoff",
    "CacheState",
    "ProjectMetadataCache",
    "RefreshOutcome",
    "RefreshResult",
]
