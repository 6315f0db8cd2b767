"""
FastMCP server for Relational MCP Server.

Registers the relational tools on a FastMCP instance. The raw SQL tool is only
exposed when RAW_QUERY_ENABLED is set.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from fastmcp import FastMCP

from . import tools
from .config import ServerConfig

logger = logging.getLogger(__name__)


def register_tools(mcp_server: FastMCP, raw_query_enabled: bool = False) -> List[str]:
    """
    Register the relational tools.

    Returns:
        Names of the registered tools
    """
    registered = []

    @mcp_server.tool(name="relational_select")
    def relational_select_tool(
        table: str,
        vendor: Optional[str] = None,
        connection_string: Optional[str] = None,
        columns: Optional[List[str]] = None,
        where: Optional[List[Dict[str, Any]]] = None,
        order_by: Optional[List[Dict[str, Any]]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        streaming: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Execute a SELECT with WHERE conditions, ORDER BY, LIMIT and OFFSET. All values are bound parameters."""
        return tools.relational_select(
            table, vendor, connection_string, columns, where, order_by, limit, offset, streaming
        )
    registered.append("relational_select")

    @mcp_server.tool(name="relational_insert")
    def relational_insert_tool(
        table: str,
        data: Union[Dict[str, Any], List[Dict[str, Any]]],
        vendor: Optional[str] = None,
        connection_string: Optional[str] = None,
        returning: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Insert one or more rows, optionally returning generated ids or full rows."""
        return tools.relational_insert(table, data, vendor, connection_string, returning)
    registered.append("relational_insert")

    @mcp_server.tool(name="relational_update")
    def relational_update_tool(
        table: str,
        vendor: Optional[str] = None,
        connection_string: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        where: Optional[List[Dict[str, Any]]] = None,
        allow_full_table_update: bool = False,
        optimistic_lock: Optional[Dict[str, Any]] = None,
        operations: Optional[List[Dict[str, Any]]] = None,
        batch: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Update rows with required WHERE conditions, optional optimistic locking and batch mode."""
        return tools.relational_update(
            table, vendor, connection_string, data, where, allow_full_table_update,
            optimistic_lock, operations, batch,
        )
    registered.append("relational_update")

    @mcp_server.tool(name="relational_delete")
    def relational_delete_tool(
        table: str,
        vendor: Optional[str] = None,
        connection_string: Optional[str] = None,
        where: Optional[List[Dict[str, Any]]] = None,
        allow_full_table_delete: bool = False,
        soft_delete: Optional[Dict[str, Any]] = None,
        cascade: bool = False,
        operations: Optional[List[Dict[str, Any]]] = None,
        batch: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Delete rows, or soft-delete them by stamping a column, with required WHERE conditions."""
        return tools.relational_delete(
            table, vendor, connection_string, where, allow_full_table_delete,
            soft_delete, cascade, operations, batch,
        )
    registered.append("relational_delete")

    @mcp_server.tool(name="relational_get_schema")
    def relational_get_schema_tool(
        vendor: Optional[str] = None,
        connection_string: Optional[str] = None,
        database: Optional[str] = None,
        tables: Optional[List[str]] = None,
        cache_ttl_ms: Optional[int] = None,
        refresh_cache: bool = False,
    ) -> Dict[str, Any]:
        """Introspect tables, columns, primary keys, foreign keys and indexes."""
        return tools.relational_get_schema(vendor, connection_string, database, tables, cache_ttl_ms, refresh_cache)
    registered.append("relational_get_schema")

    @mcp_server.tool(name="relational_diff_schemas")
    def relational_diff_schemas_tool(before_json: str, after_json: str) -> Dict[str, Any]:
        """Compare two exported schema snapshots and report added, removed and changed tables and columns."""
        return tools.relational_diff_schemas(before_json, after_json)
    registered.append("relational_diff_schemas")

    if raw_query_enabled:
        @mcp_server.tool(name="relational_query")
        def relational_query_tool(
            sql: str,
            vendor: Optional[str] = None,
            connection_string: Optional[str] = None,
            params: Optional[Union[List[Any], Dict[str, Any]]] = None,
        ) -> Dict[str, Any]:
            """Execute raw parameterized SQL. DDL and unparameterized mutations are rejected."""
            return tools.relational_query(sql, vendor, connection_string, params)
        registered.append("relational_query")

    return registered


def create_server(config: ServerConfig) -> FastMCP:
    """
    Build the FastMCP server for a configuration.

    Args:
        config: Server configuration object

    Returns:
        FastMCP instance with the relational tools registered
    """
    mcp_config = config.get_mcp_server_config()
    tools.initialize_tools(config)

    mcp_server = FastMCP(name=mcp_config.name)
    registered = register_tools(mcp_server, raw_query_enabled=mcp_config.raw_query_enabled)

    logger.info(
        "MCP server initialized successfully",
        extra={
            "server_name": mcp_config.name,
            "server_version": mcp_config.version,
            "tools_registered": len(registered),
            "raw_query_enabled": mcp_config.raw_query_enabled,
        },
    )
    return mcp_server
