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

"""Exception types raised by the YApi client and the cache layer."""

from typing import Optional


class YApiError(Exception):
    """Base class for every failure reported by a backend call."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return f"{self.__class__.__name__}: {self.message}"


class Unauthorized(YApiError):
    """The project has no configured token, or the backend rejected it."""


class NotFound(YApiError):
    """The requested project, category or interface does not exist."""


class RemoteError(YApiError):
    """The backend answered with a non-zero application error code."""

    def __init__(self, message: str, errcode: Optional[int] = None):
        super().__init__(message)
        self.errcode = errcode


class TransportError(YApiError):
    """Network failure or timeout while talking to the backend."""


class StorageError(Exception):
    """The on-disk snapshot could not be read or written."""


class ConfigurationError(Exception):
    """A credential entry could not be parsed."""
