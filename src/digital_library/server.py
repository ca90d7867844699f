"""Digital Library MCP Server - FastMCP Implementation

Exposes the library to MCP clients over stdio (or streamable HTTP):

- Catalog tools: add, update, look up, search and review books
- Circulation tools: borrow, return and overdue tracking
- Annotation tools: highlights, notes, likes, replies and search
"""

import logging
import signal
import sys
from typing import Any

from fastmcp import FastMCP

from .config import LibraryConfig, get_config
from .database.session import get_db_manager
from .observability import initialize_observability
from .tools import all_tools

# Initialize logging - stderr for logs, stdout for MCP protocol
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)

logger = logging.getLogger(__name__)

# fastmcp spells the HTTP transport with a hyphen
_TRANSPORTS = {"stdio": "stdio", "streamable_http": "streamable-http"}


def create_server(config: LibraryConfig | None = None) -> FastMCP:
    """Create the FastMCP server and register every tool."""
    config = config or get_config()

    mcp = FastMCP(
        name=config.server_name,
        version=config.server_version,
        instructions=(
            "Digital Library - a book catalog with copy-level lending and reader "
            "annotations. Use the catalog tools to find books, borrow_book and "
            "return_book to lend copies, and the annotation tools to highlight, "
            "take notes and discuss passages."
        ),
    )

    for tool in all_tools:
        logger.debug("Registering tool: %s", tool["name"])
        try:
            mcp.tool(
                name=tool["name"],
                description=tool["description"],
            )(tool["handler"])
        except Exception:
            logger.exception("Failed to register tool %s", tool["name"])
            raise

    logger.info("Registered %d tools", len(all_tools))
    return mcp


def run_server(config: LibraryConfig) -> None:
    """Initialize storage and observability, then serve until stopped."""
    if config.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Debug mode enabled - verbose protocol logging active")
    else:
        logging.getLogger().setLevel(config.log_level)
        logging.getLogger("fastmcp").setLevel(logging.WARNING)

    initialize_observability()

    db_manager = get_db_manager()
    db_manager.init_database()
    if not db_manager.verify_connection():
        logger.error("Database is not reachable, refusing to start")
        sys.exit(1)

    mcp = create_server(config)

    def signal_handler(signum: int, _frame: Any) -> None:
        logger.info("Received signal %s, initiating shutdown...", signum)
        db_manager.close()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info(
        "Starting %s v%s on %s transport",
        config.server_name,
        config.server_version,
        config.transport,
    )
    try:
        mcp.run(transport=_TRANSPORTS[config.transport])
    finally:
        db_manager.close()


def main() -> None:
    """Main entry point for the MCP server (``digital-library`` console script)."""
    config = get_config()
    try:
        logger.info("=" * 60)
        logger.info("Digital Library MCP Server")
        logger.info("Version: %s", config.server_version)
        logger.info("Transport: %s", config.transport)
        logger.info("Database: %s", config.get_database_url())
        logger.info("=" * 60)

        run_server(config)

    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception:
        logger.exception("Failed to start MCP server")
        sys.exit(1)


if __name__ == "__main__":
    main()
