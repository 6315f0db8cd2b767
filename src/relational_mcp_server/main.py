"""Main entry point for Relational MCP Server."""

import argparse
import logging
import sys
from typing import List, Optional

from . import __version__
from .config import ServerConfig, load_config
from .connection_manager import ConnectionManager
from .exceptions import ConfigurationError, DatabaseConnectionError, RelationalToolkitError
from .server import create_server


def setup_logging(log_level: str, log_format: str) -> None:
    """Set up logging configuration with structured logging."""
    level = getattr(logging, log_level.upper())

    if log_format == "json":
        format_str = (
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
            '"logger": "%(name)s", "message": "%(message)s", '
            '"module": "%(module)s", "function": "%(funcName)s", "line": %(lineno)d}'
        )
    else:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s [%(module)s:%(funcName)s:%(lineno)d]"

    logging.basicConfig(
        level=level,
        format=format_str,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
        force=True,
    )

    # Set specific log levels for external libraries
    logging.getLogger("pymysql").setLevel(logging.WARNING)
    logging.getLogger("psycopg2").setLevel(logging.WARNING)
    logging.getLogger("fastmcp").setLevel(logging.INFO)


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Relational MCP Server - safe PostgreSQL, MySQL and SQLite tools over MCP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  DB_VENDOR                Default vendor: postgresql, mysql or sqlite
  DB_CONNECTION_STRING     Default connection string
  DB_DATABASE              Default logical database name (schema cache key)
  SCHEMA_CACHE_TTL_MS      Schema cache TTL in milliseconds (default: 60000)
  BATCH_SIZE               Default batch size (default: 100)
  BATCH_CONTINUE_ON_ERROR  Record failed batches and continue (default: true)
  BATCH_MAX_RETRIES        Retries per failed batch (default: 0)
  BATCH_RETRY_DELAY_MS     Delay between retries (default: 0)
  RAW_QUERY_ENABLED        Expose the raw SQL tool (default: false)
  MCP_SERVER_NAME          MCP server name (default: relational-mcp-server)
  MCP_SERVER_VERSION       MCP server version (default: 1.0.0)
  LOG_LEVEL                Logging level (default: INFO)
  LOG_FORMAT               Logging format: text or json (default: json)

Examples:
  relational-mcp-server
  relational-mcp-server --log-level DEBUG
  relational-mcp-server --validate-config
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set logging level (overrides LOG_LEVEL env var)"
    )

    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        help="Set logging format (overrides LOG_FORMAT env var)"
    )

    parser.add_argument(
        "--validate-config",
        action="store_true",
        help="Validate configuration and exit"
    )

    parser.add_argument(
        "--check-connection",
        action="store_true",
        help="Test the default database connection and exit"
    )

    return parser.parse_args(argv)


def check_connection(config: ServerConfig) -> int:
    """Validate configuration and test the default database connection."""
    logger = logging.getLogger(__name__)

    try:
        config.validate_configuration()
        logger.info("Configuration validation successful")

        with ConnectionManager(config.get_connection_config()) as manager:
            if not manager.is_healthy():
                raise DatabaseConnectionError("Health check query failed")
        logger.info("Database connection test successful")
        return 0

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except DatabaseConnectionError as e:
        logger.error(f"Database connection error: {e}")
        return 2
    except RelationalToolkitError as e:
        logger.error(f"Connection check failed: {e}")
        return 2


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the Relational MCP Server."""
    args = parse_arguments(argv)

    try:
        config = load_config()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format

    setup_logging(config.log_level, config.log_format)
    logger = logging.getLogger(__name__)

    if args.validate_config:
        logger.info("Configuration validation successful")
        return 0

    if args.check_connection:
        return check_connection(config)

    try:
        mcp_server = create_server(config)
        logger.info(
            f"Starting Relational MCP Server v{config.mcp_server_version}",
            extra={
                "server_version": config.mcp_server_version,
                "default_vendor": config.db_vendor.value if config.db_vendor else None,
                "log_level": config.log_level,
            },
        )
        mcp_server.run()
        return 0
    except KeyboardInterrupt:
        logger.info("Server interrupted by user")
        return 0
    except Exception as e:
        logger.exception(f"Unexpected error: {e}", extra={"error_type": "unexpected"})
        print(f"Unexpected error: {e}", file=sys.stderr)
        return 3


if __name__ == "__main__":
    sys.exit(main())
