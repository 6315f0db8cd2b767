"""Configuration management for Relational MCP Server."""

import logging
import os
from typing import Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .batch_executor import DEFAULT_BATCH_SIZE, MAX_BATCH_SIZE, MAX_RETRY_ATTEMPTS, MAX_RETRY_DELAY_MS
from .cache_manager import DEFAULT_SCHEMA_TTL_MS
from .exceptions import ConfigurationError
from .models import DatabaseVendor

logger = logging.getLogger(__name__)


class ConnectionCredentials(BaseModel):
    """Discrete connection settings, used instead of a connection string."""

    host: Optional[str] = Field(default=None, description="Database host address")
    port: Optional[int] = Field(default=None, description="Database port number")
    user: Optional[str] = Field(default=None, description="Database username")
    password: Optional[str] = Field(default=None, description="Database password")
    database: Optional[str] = Field(default=None, description="Database name, or file path for SQLite")
    url: Optional[str] = Field(default=None, description="Connection URL, used by SQLite when set")
    ssl: bool = Field(default=False, description="Require SSL")
    connect_timeout: int = Field(default=10, description="Connection timeout in seconds")

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        """Validate port number is in valid range."""
        if v is not None and not 1 <= v <= 65535:
            raise ValueError('Port must be between 1 and 65535')
        return v

    @field_validator('connect_timeout')
    @classmethod
    def validate_connect_timeout(cls, v):
        if v <= 0:
            raise ValueError('Timeout values must be positive')
        return v


class ConnectionConfig(BaseModel):
    """Vendor plus either a connection string or discrete credentials."""

    vendor: DatabaseVendor
    connection: Union[str, ConnectionCredentials]

    @field_validator('connection')
    @classmethod
    def validate_connection(cls, v):
        if isinstance(v, str) and not v.strip():
            raise ValueError('Connection string must not be empty')
        return v


class CacheConfig(BaseModel):
    """Schema cache configuration."""

    schema_ttl_ms: int = Field(default=DEFAULT_SCHEMA_TTL_MS, description="Schema cache TTL in milliseconds, 0 disables")
    max_size: int = Field(default=256, description="Maximum cache entries")

    @field_validator('schema_ttl_ms')
    @classmethod
    def validate_ttl(cls, v):
        """Validate TTL is not negative."""
        if v < 0:
            raise ValueError('Schema cache TTL must not be negative')
        return v

    @field_validator('max_size')
    @classmethod
    def validate_max_size(cls, v):
        """Validate max size is positive."""
        if v <= 0:
            raise ValueError('Cache max size must be positive')
        return v


class BatchConfig(BaseModel):
    """Default batch execution settings."""

    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, description="Items per batch")
    continue_on_error: bool = Field(default=True, description="Record failed batches and keep going")
    max_retries: int = Field(default=0, description="Retries per failed batch")
    retry_delay_ms: int = Field(default=0, description="Delay between retries in milliseconds")

    @field_validator('batch_size')
    @classmethod
    def validate_batch_size(cls, v):
        if not 1 <= v <= MAX_BATCH_SIZE:
            raise ValueError(f'Batch size must be between 1 and {MAX_BATCH_SIZE}')
        return v

    @field_validator('max_retries')
    @classmethod
    def validate_max_retries(cls, v):
        if not 0 <= v <= MAX_RETRY_ATTEMPTS:
            raise ValueError(f'Max retries must be between 0 and {MAX_RETRY_ATTEMPTS}')
        return v

    @field_validator('retry_delay_ms')
    @classmethod
    def validate_retry_delay(cls, v):
        if not 0 <= v <= MAX_RETRY_DELAY_MS:
            raise ValueError(f'Retry delay must be between 0 and {MAX_RETRY_DELAY_MS} ms')
        return v


class MCPServerConfig(BaseModel):
    """MCP server configuration."""

    name: str = Field(default="relational-mcp-server", description="Server name")
    version: str = Field(default="1.0.0", description="Server version")
    raw_query_enabled: bool = Field(default=False, description="Expose the raw SQL tool")


class ServerConfig(BaseSettings):
    """Main server configuration loaded from environment variables."""

    # Default database
    db_vendor: Optional[DatabaseVendor] = Field(default=None, description="DB_VENDOR")
    db_connection_string: Optional[str] = Field(default=None, description="DB_CONNECTION_STRING")
    db_database: Optional[str] = Field(default=None, description="DB_DATABASE")

    # Schema cache
    schema_cache_ttl_ms: int = Field(default=DEFAULT_SCHEMA_TTL_MS)
    schema_cache_max_size: int = Field(default=256)

    # Batch defaults
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE)
    batch_continue_on_error: bool = Field(default=True)
    batch_max_retries: int = Field(default=0)
    batch_retry_delay_ms: int = Field(default=0)

    # MCP server
    raw_query_enabled: bool = Field(default=False)
    mcp_server_name: str = Field(default="relational-mcp-server")
    mcp_server_version: str = Field(default="1.0.0")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator('db_vendor', mode='before')
    @classmethod
    def validate_db_vendor(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            return v or None
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level must be one of: {valid_levels}')
        return v.upper()

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format."""
        valid_formats = ["json", "text"]
        if v.lower() not in valid_formats:
            raise ValueError(f'Log format must be one of: {valid_formats}')
        return v.lower()

    def has_default_connection(self) -> bool:
        return self.db_vendor is not None and bool(self.db_connection_string)

    def get_connection_config(self) -> ConnectionConfig:
        """Get the default connection configuration object."""
        if not self.has_default_connection():
            raise ConfigurationError("DB_VENDOR and DB_CONNECTION_STRING are required for the default connection")
        return ConnectionConfig(vendor=self.db_vendor, connection=self.db_connection_string)

    def get_cache_config(self) -> CacheConfig:
        """Get cache configuration object."""
        return CacheConfig(schema_ttl_ms=self.schema_cache_ttl_ms, max_size=self.schema_cache_max_size)

    def get_batch_config(self) -> BatchConfig:
        """Get batch configuration object."""
        return BatchConfig(
            batch_size=self.batch_size,
            continue_on_error=self.batch_continue_on_error,
            max_retries=self.batch_max_retries,
            retry_delay_ms=self.batch_retry_delay_ms,
        )

    def get_mcp_server_config(self) -> MCPServerConfig:
        """Get MCP server configuration object."""
        return MCPServerConfig(
            name=self.mcp_server_name,
            version=self.mcp_server_version,
            raw_query_enabled=self.raw_query_enabled,
        )

    def validate_configuration(self) -> None:
        """
        Validate the complete configuration.

        Raises:
            ConfigurationError: Listing every problem found
        """
        errors = []

        if self.db_connection_string and self.db_vendor is None:
            errors.append("DB_VENDOR is required when DB_CONNECTION_STRING is set")
        if self.db_vendor is not None and not self.db_connection_string:
            errors.append("DB_CONNECTION_STRING is required when DB_VENDOR is set")

        for getter in (self.get_cache_config, self.get_batch_config):
            try:
                getter()
            except ValidationError as e:
                errors.extend(error["msg"] for error in e.errors())

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")


def load_config(env_file: Optional[str] = None) -> ServerConfig:
    """
    Load and validate server configuration.

    Variables from a `.env` file are loaded into the process environment first;
    values already set in the environment win.

    Raises:
        ConfigurationError: If the configuration cannot be loaded or is invalid
    """
    from dotenv import load_dotenv

    env_path = env_file or os.path.join(os.getcwd(), ".env")
    if os.path.exists(env_path):
        load_dotenv(env_path, override=False)
        logger.info(f"Loaded environment from: {env_path}")
    else:
        logger.debug("No .env file found, using environment variables only")

    try:
        config = ServerConfig()
        config.validate_configuration()
    except ConfigurationError:
        raise
    except ValidationError as e:
        logger.error(f"Failed to load configuration: {e}")
        raise ConfigurationError(f"Failed to load configuration: {e}") from e

    logger.info(
        "Configuration loaded successfully",
        extra={
            "vendor": config.db_vendor.value if config.db_vendor else None,
            "server_name": config.mcp_server_name,
            "raw_query_enabled": config.raw_query_enabled,
        },
    )
    return config
