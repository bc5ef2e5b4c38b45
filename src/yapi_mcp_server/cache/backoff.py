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
import time
from dataclasses import dataclass
from typing import Callable, Dict, Hashable

from yapi_mcp_server.utils.constants import (
    BACKOFF_BASE_DELAY_SECONDS,
    BACKOFF_MAX_DELAY_SECONDS,
)
from yapi_mcp_server.utils.errors import YApiError

# Logger for this module
logger = logging.getLogger(__name__)


@dataclass
class _FailureRecord:
    failures: int
    retry_after: float
    error: YApiError


class FetchBackoff:
    """
    Exponential backoff for on-demand fetches, tracked per key.

    After the n-th consecutive failure for a key, fetches of that key are
    refused for ``base_delay * 2 ** (n - 1)`` seconds, capped at ``max_delay``.
    A refused fetch re-raises the error that opened the window.
    """

    def __init__(
        self,
        base_delay: float = BACKOFF_BASE_DELAY_SECONDS,
        max_delay: float = BACKOFF_MAX_DELAY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._clock = clock
        self._records: Dict[Hashable, _FailureRecord] = {}

    def check(self, key: Hashable) -> None:
        """Raise the recorded error if ``key`` is still inside its backoff window."""
        record = self._records.get(key)
        if record is None:
            return
        remaining = record.retry_after - self._clock()
        if remaining > 0:
            logger.debug(
                "Skipping fetch of %s, backing off for %.1fs more", key, remaining
            )
            raise record.error

    def record_failure(self, key: Hashable, error: YApiError) -> float:
        """Open or extend the backoff window for ``key``; returns its length."""
        previous = self._records.get(key)
        failures = previous.failures + 1 if previous else 1
        delay = min(self.base_delay * (2 ** (failures - 1)), self.max_delay)
        self._records[key] = _FailureRecord(
            failures=failures, retry_after=self._clock() + delay, error=error
        )
        logger.info(
            "Fetch of %s failed (%d in a row), retrying after %.1fs: %s",
            key,
            failures,
            delay,
            error,
        )
        return delay

    def record_success(self, key: Hashable) -> None:
        self._records.pop(key, None)

    def reset(self) -> None:
        self._records.clear()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._records
