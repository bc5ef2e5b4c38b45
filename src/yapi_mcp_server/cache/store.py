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
Durable snapshot of the project metadata cache.

The snapshot is a single JSON document::

    {"schemaVersion": 1, "createdAt": <epoch ms>, "projectInfoById": {...}}

Anything that cannot be read back as exactly that shape is reported as a
missing snapshot, which the cache answers with a refresh.
"""

import json
import logging
import os
import tempfile
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from yapi_mcp_server.utils.common import ProjectInfo
from yapi_mcp_server.utils.constants import (
    CACHE_FILE_NAME,
    CACHE_SCHEMA_VERSION,
    DEFAULT_CACHE_DIR,
)
from yapi_mcp_server.utils.errors import StorageError

# Logger for this module
logger = logging.getLogger(__name__)

MS_PER_MINUTE = 60 * 1000


def current_time_ms() -> int:
    return int(time.time() * 1000)


class CacheSnapshot(BaseModel):
    """The persisted form of the project info map."""

    model_config = ConfigDict(populate_by_name=True)

    schema_version: int = Field(alias="schemaVersion")
    created_at: int = Field(alias="createdAt", description="Epoch milliseconds")
    project_info_by_id: Dict[str, ProjectInfo] = Field(alias="projectInfoById")

    def expires_at(self, ttl_minutes: float) -> float:
        return self.created_at + ttl_minutes * MS_PER_MINUTE

    def is_expired(self, ttl_minutes: float, now_ms: int) -> bool:
        return now_ms > self.expires_at(ttl_minutes)


class PersistentCacheStore:
    """
    Reads and writes the project info snapshot on local disk.

    The store keeps nothing in memory; every read parses the file again.
    """

    def __init__(
        self,
        cache_dir: Union[str, Path, None] = None,
        file_name: str = CACHE_FILE_NAME,
        clock: Callable[[], int] = current_time_ms,
    ):
        """
        Args:
            cache_dir: Directory holding the snapshot, defaults to ``./.yapi-cache``
            file_name: Name of the snapshot file inside ``cache_dir``
            clock: Returns the current time in epoch milliseconds
        """
        self.cache_dir = Path(cache_dir) if cache_dir else Path.cwd() / DEFAULT_CACHE_DIR
        self.path = self.cache_dir / file_name
        self._clock = clock
        self._last_created_at = 0

    def load(self) -> Optional[CacheSnapshot]:
        """
        Read the snapshot from disk.

        Returns:
            CacheSnapshot, or None when the file is missing, unreadable or invalid
        """
        try:
            return self._read()
        except StorageError as e:
            logger.warning("Ignoring project info cache %s: %s", self.path, e)
            return None

    def _read(self) -> Optional[CacheSnapshot]:
        if not self.path.exists():
            logger.debug("Project info cache %s does not exist", self.path)
            return None
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StorageError(f"unreadable: {e}") from e

        if not isinstance(raw, dict):
            raise StorageError("top level value is not an object")
        if raw.get("schemaVersion") != CACHE_SCHEMA_VERSION:
            raise StorageError(
                f"schema version {raw.get('schemaVersion')!r} != {CACHE_SCHEMA_VERSION}"
            )
        if not raw.get("createdAt"):
            raise StorageError("missing createdAt timestamp")
        try:
            return CacheSnapshot.model_validate(raw)
        except ValidationError as e:
            raise StorageError(f"invalid structure: {e.error_count()} error(s)") from e

    def is_expired(self, ttl_minutes: float) -> bool:
        """
        Whether the snapshot is missing or older than ``ttl_minutes``.

        Args:
            ttl_minutes: Time to live of a snapshot in minutes
        """
        snapshot = self.load()
        if snapshot is None:
            logger.debug("No project info cache, treating as expired")
            return True

        now = self._clock()
        expired = snapshot.is_expired(ttl_minutes, now)
        if expired:
            logger.debug(
                "Project info cache expired, created %s, ttl %s minutes",
                _format_ms(snapshot.created_at),
                ttl_minutes,
            )
        else:
            remaining = int((snapshot.expires_at(ttl_minutes) - now) // MS_PER_MINUTE)
            logger.debug("Project info cache valid for %d more minute(s)", remaining)
        return expired

    def save(self, project_info_by_id: Mapping[str, ProjectInfo]) -> bool:
        """
        Replace the snapshot with ``project_info_by_id``.

        The file is written to a temporary sibling and moved into place, so a
        reader sees either the old or the new snapshot.

        Returns:
            True if the snapshot was written, False if the write failed
        """
        # createdAt never goes backwards within one process.
        created_at = max(self._clock(), self._last_created_at)
        snapshot = CacheSnapshot(
            schema_version=CACHE_SCHEMA_VERSION,
            created_at=created_at,
            project_info_by_id=dict(project_info_by_id),
        )
        try:
            self._write_atomic(snapshot.model_dump_json(by_alias=True, indent=2))
        except StorageError as e:
            logger.error("Failed to save project info cache %s: %s", self.path, e)
            return False

        self._last_created_at = created_at
        logger.info(
            "Cached %d project(s) to %s", len(project_info_by_id), self.path
        )
        return True

    def _write_atomic(self, content: str) -> None:
        tmp_path = None
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.cache_dir, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as tmp_file:
                tmp_file.write(content)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise StorageError(str(e)) from e

    def clear(self) -> None:
        """Delete the snapshot. Clearing a missing snapshot is not an error."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.error("Failed to clear project info cache %s: %s", self.path, e)
            return
        logger.info("Cleared project info cache %s", self.path)


def _format_ms(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000).isoformat(timespec="seconds")
