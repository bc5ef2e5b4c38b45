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
MCP Server Main Module

This module serves as the main entry point for the Model-Context-Protocol (MCP) server
that exposes YApi projects, categories and interfaces as tools.
It handles configuration, server initialization, tool registration, and graceful shutdown.
"""

# Standard library imports
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Sequence, Tuple

# Third-party imports
from mcp.server.fastmcp import FastMCP

# Use absolute imports
from yapi_mcp_server.cache import (
    CredentialTable,
    PersistentCacheStore,
    ProjectMetadataCache,
)
from yapi_mcp_server.client import YApiClient
from yapi_mcp_server.config import ServerConfig, load_config, log_config, parse_log_level
from yapi_mcp_server.tools import register_interface_tools, register_project_tools
from yapi_mcp_server.utils.constants import SERVER_NAME

logger = logging.getLogger(__name__)

SERVER_INSTRUCTIONS = (
    "Tools for reading and editing API documentation on a YApi server. "
    "Use yapi_list_projects to find project ids, yapi_get_categories to find "
    "category ids, and yapi_search_apis to find interfaces."
)


def configure_logging(level_name: Optional[str]) -> None:
    """
    Configure root logging to stderr; stdout belongs to the stdio transport.

    Args:
        level_name: One of debug, info, warn, error or none
    """
    log_level = parse_log_level(level_name)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        force=True,
    )
    logger.debug("Logging configured at %s level", level_name)


def initialize_yapi_client(
    config: ServerConfig, credentials: CredentialTable
) -> YApiClient:
    """
    Initialize the YApi client for the MCP server.

    Returns:
        YApiClient: The initialized client instance
    """
    if not config.yapi_base_url:
        raise ValueError("YAPI_BASE_URL is required")
    if not len(credentials):
        logger.warning(
            "No project tokens configured; set YAPI_TOKEN as projectId:token,projectId:token"
        )

    return YApiClient(
        base_url=config.yapi_base_url,
        credentials=credentials,
        ssl_enabled=config.ssl_enabled,
        timeout=config.request_timeout,
        max_retries=config.max_retries,
    )


async def shutdown_client(yapi_client: YApiClient):
    """
    Properly close the YApi client's aiohttp session.

    Args:
        yapi_client: The YApi client to close
    """
    try:
        await yapi_client.close()
    except RuntimeError as e:
        # Connections still bound to the stopped server loop cannot be closed here.
        logger.warning("YApi client session not closed cleanly: %s", e)
        return
    logger.info("YApi client session closed")


def close_client(yapi_client: YApiClient) -> None:
    """Close the client on a fresh event loop after the server loop has stopped."""
    loop = asyncio.new_event_loop()
    try:
        loop.run_until_complete(shutdown_client(yapi_client))
    finally:
        loop.close()


def build_lifespan(metadata_cache: ProjectMetadataCache):
    """
    Create the server lifespan, which starts the cache once the event loop runs.

    FastMCP enters the lifespan once per session; the cache only initializes
    on the first entry, and the shared client is closed by :func:`main`.
    """

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[None]:
        metadata_cache.initialize()
        yield

    return lifespan


def create_server(config: ServerConfig) -> Tuple[FastMCP, YApiClient]:
    """
    Wire the client, cache and tools into a FastMCP server.

    Args:
        config: The resolved server configuration

    Returns:
        The server, ready to run, and the client it shares across sessions
    """
    credentials = config.credentials()
    log_config(config, credentials)

    yapi_client = initialize_yapi_client(config, credentials)
    logger.info("YApi client initialized successfully")

    store = PersistentCacheStore(cache_dir=config.cache_dir)
    metadata_cache = ProjectMetadataCache(
        credentials=credentials,
        client=yapi_client,
        store=store,
        ttl_minutes=config.cache_ttl_minutes,
    )
    logger.info("Project metadata cache created successfully")

    mcp = FastMCP(
        SERVER_NAME,
        instructions=SERVER_INSTRUCTIONS,
        lifespan=build_lifespan(metadata_cache),
        port=config.port,
    )
    register_project_tools(mcp, metadata_cache)
    register_interface_tools(mcp, metadata_cache)
    logger.info("Tools registered")
    return mcp, yapi_client


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Entry point for the YApi MCP server."""
    config = load_config(argv)
    configure_logging(config.log_level)
    logger.info("Starting YApi MCP Server")

    mcp, yapi_client = create_server(config)

    logger.info("Starting %s transport - Press Ctrl+C to exit", config.transport)
    try:
        mcp.run(transport=config.transport)
    except KeyboardInterrupt:
        logger.info("Server shutting down")
    finally:
        close_client(yapi_client)
    logger.info("Server shut down gracefully")


if __name__ == "__main__":
    # Calling main
    main()
