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
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional

from yapi_mcp_server.utils.constants import TOKEN_MASK_VISIBLE_CHARS
from yapi_mcp_server.utils.errors import ConfigurationError

# Logger for this module
logger = logging.getLogger(__name__)


def mask_token(token: str) -> str:
    """Hide all but the trailing characters of a token."""
    if len(token) <= TOKEN_MASK_VISIBLE_CHARS:
        return "****"
    return f"****{token[-TOKEN_MASK_VISIBLE_CHARS:]}"


def _parse_entry(entry: str) -> tuple:
    project_id, separator, token = entry.partition(":")
    project_id = project_id.strip()
    token = token.strip()
    if not separator:
        raise ConfigurationError("missing ':' between project id and token")
    if not project_id:
        raise ConfigurationError("empty project id")
    if not token:
        raise ConfigurationError(f"empty token for project {project_id}")
    return project_id, token


class CredentialTable:
    """
    Read-only mapping from YApi project id to the project's access token.

    Built from a ``projectId:token,projectId:token`` string. Entries keep the
    order in which they were configured; a repeated project id keeps the last
    token given for it.
    """

    def __init__(self, tokens: Optional[Mapping[str, str]] = None):
        self._tokens: Mapping[str, str] = MappingProxyType(dict(tokens or {}))

    @classmethod
    def parse(cls, raw: Optional[str]) -> "CredentialTable":
        """
        Parse a multi-project credential string.

        Malformed entries are logged and skipped so one typo does not
        disable every other project.

        Args:
            raw: The credential string, e.g. ``"10:abc,20:def"``

        Returns:
            CredentialTable holding every well-formed entry
        """
        tokens: Dict[str, str] = {}
        for position, entry in enumerate((raw or "").split(",")):
            entry = entry.strip()
            if not entry:
                continue
            try:
                project_id, token = _parse_entry(entry)
            except ConfigurationError as e:
                logger.warning(
                    "Skipping credential entry #%d: %s", position + 1, e
                )
                continue
            if project_id in tokens:
                logger.warning(
                    "Project %s configured more than once, keeping the last token",
                    project_id,
                )
                # Re-insert so the project takes its last configured position.
                del tokens[project_id]
            tokens[project_id] = token

        logger.info("Loaded credentials for %d YApi project(s)", len(tokens))
        for project_id, token in tokens.items():
            logger.debug("Project %s -> token %s", project_id, mask_token(token))
        return cls(tokens)

    def lookup(self, project_id: str) -> Optional[str]:
        """Return the token for ``project_id``, or None when not configured."""
        return self._tokens.get(str(project_id))

    @property
    def project_ids(self) -> List[str]:
        return list(self._tokens.keys())

    def masked(self) -> Dict[str, str]:
        """Project ids mapped to masked tokens, safe for logs and status output."""
        return {pid: mask_token(token) for pid, token in self._tokens.items()}

    def __contains__(self, project_id: object) -> bool:
        return str(project_id) in self._tokens

    def __iter__(self) -> Iterator[str]:
        return iter(self._tokens)

    def __len__(self) -> int:
        return len(self._tokens)

    def __repr__(self) -> str:
        return f"CredentialTable({self.masked()!r})"
