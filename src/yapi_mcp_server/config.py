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
Server configuration.

Each option is taken from its command line flag, then from its environment
variable (a ``.env`` file in the working directory is loaded first), then
from its default.
"""

import argparse
import logging
import os
from typing import Dict, Literal, Optional, Sequence, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from yapi_mcp_server.cache.credentials import CredentialTable
from yapi_mcp_server.utils.constants import (
    DEFAULT_BASE_URL,
    DEFAULT_CACHE_DIR,
    DEFAULT_CACHE_TTL_MINUTES,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PORT,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TRANSPORT,
    SUPPORTED_TRANSPORTS,
)

logger = logging.getLogger(__name__)

ConfigSource = Literal["cli", "env", "default"]

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "none": logging.CRITICAL + 1,
}


def parse_log_level(name: Optional[str]) -> int:
    """Map a ``debug|info|warn|error|none`` name to a logging level, INFO if unknown."""
    return LOG_LEVELS.get((name or "").strip().lower(), logging.INFO)


def parse_ssl_flag(value, default="true"):
    """
    Parse SSL flag which can be either a boolean or a path to a certificate.

    Returns:
        bool or str: True/False for boolean values, or the path string for certificates
    """
    if value is None:
        value = default
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    return value


class ServerConfig(BaseModel):
    yapi_base_url: str = DEFAULT_BASE_URL
    yapi_token: str = ""
    cache_ttl_minutes: float = Field(default=DEFAULT_CACHE_TTL_MINUTES, ge=0)
    log_level: str = "info"
    cache_dir: str = DEFAULT_CACHE_DIR
    ssl_enabled: Union[bool, str] = True
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    transport: str = DEFAULT_TRANSPORT
    port: int = DEFAULT_PORT
    sources: Dict[str, ConfigSource] = Field(default_factory=dict)

    def credentials(self) -> CredentialTable:
        return CredentialTable.parse(self.yapi_token)


# option name -> (flag, environment variable, type)
_OPTIONS = {
    "yapi_base_url": ("--yapi-base-url", "YAPI_BASE_URL", str),
    "yapi_token": ("--yapi-token", "YAPI_TOKEN", str),
    "cache_ttl_minutes": ("--yapi-cache-ttl", "YAPI_CACHE_TTL", float),
    "log_level": ("--yapi-log-level", "YAPI_LOG_LEVEL", str),
    "cache_dir": ("--yapi-cache-dir", "YAPI_CACHE_DIR", str),
    "ssl_enabled": ("--ssl-enabled", "SSL_ENABLED", parse_ssl_flag),
    "request_timeout": ("--request-timeout", "REQUEST_TIMEOUT", float),
    "max_retries": ("--max-retries", "MAX_RETRIES", int),
    "transport": ("--transport", "MCP_TRANSPORT", str),
    "port": ("--port", "PORT", int),
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="yapi-mcp-server", description="MCP server for the YApi API platform"
    )
    parser.add_argument("--yapi-base-url", help="YApi server base URL")
    parser.add_argument(
        "--yapi-token", help="Project tokens as projectId:token,projectId:token"
    )
    parser.add_argument("--yapi-cache-ttl", help="Project cache lifetime in minutes")
    parser.add_argument(
        "--yapi-log-level", help="Log level: debug, info, warn, error or none"
    )
    parser.add_argument("--yapi-cache-dir", help="Directory for the project cache file")
    parser.add_argument("--ssl-enabled", help="true, false or a CA certificate path")
    parser.add_argument("--request-timeout", help="Request timeout in seconds")
    parser.add_argument("--max-retries", help="Retries after a network failure")
    parser.add_argument("--transport", choices=SUPPORTED_TRANSPORTS)
    parser.add_argument("--port", help="Port for the sse and streamable-http transports")
    return parser


def load_config(
    argv: Optional[Sequence[str]] = None, load_env_file: bool = True
) -> ServerConfig:
    """
    Resolve the server configuration.

    Args:
        argv: Command line arguments, defaults to ``sys.argv[1:]``
        load_env_file: Whether to load a ``.env`` file into the environment

    Returns:
        ServerConfig with the source of each option recorded in ``sources``

    Raises:
        ValueError: If a numeric option cannot be parsed or the transport is unknown
    """
    if load_env_file:
        load_dotenv()
    args = _build_parser().parse_args(argv)

    values = {}
    sources: Dict[str, ConfigSource] = {}
    for name, (flag, env_var, convert) in _OPTIONS.items():
        cli_value = getattr(args, flag.lstrip("-").replace("-", "_"))
        env_value = os.environ.get(env_var)
        if cli_value is not None:
            raw, sources[name] = cli_value, "cli"
        elif env_value:
            raw, sources[name] = env_value, "env"
        else:
            sources[name] = "default"
            continue
        try:
            values[name] = convert(raw)
        except ValueError as e:
            raise ValueError(f"Invalid value for {flag} / {env_var}: {raw!r}") from e

    config = ServerConfig(sources=sources, **values)
    if config.transport not in SUPPORTED_TRANSPORTS:
        raise ValueError(
            f"Unknown transport {config.transport!r}, expected one of {SUPPORTED_TRANSPORTS}"
        )
    return config


def log_config(config: ServerConfig, credentials: CredentialTable) -> None:
    """Log where every option came from, with tokens masked."""
    logger.info("Configuration:")
    logger.info(
        "- YAPI_BASE_URL: %s (source: %s)",
        config.yapi_base_url,
        config.sources.get("yapi_base_url", "default"),
    )
    logger.info(
        "- YAPI_TOKEN: %d project(s) configured (source: %s)",
        len(credentials),
        config.sources.get("yapi_token", "default"),
    )
    logger.debug(
        "- YAPI_TOKEN entries: %s",
        ", ".join(f"{pid}:{token}" for pid, token in credentials.masked().items())
        or "none",
    )
    logger.info(
        "- YAPI_CACHE_TTL: %s minutes (source: %s)",
        config.cache_ttl_minutes,
        config.sources.get("cache_ttl_minutes", "default"),
    )
    logger.info(
        "- YAPI_LOG_LEVEL: %s (source: %s)",
        config.log_level,
        config.sources.get("log_level", "default"),
    )
    logger.info("- transport: %s", config.transport)
