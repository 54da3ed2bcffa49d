"""Pydantic models for SQL Console configuration."""

import uuid
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import (
    BaseModel,
    Field,
    field_validator,
    model_validator,
    AliasChoices,
    ConfigDict,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from sqlconsole.exceptions import ConfigurationError


class DatabaseType(str, Enum):
    """Supported database types."""
    SQLSERVER = "sqlserver"
    SQLITE = "sqlite"


class ConnectionInfo(BaseModel):
    """Target and credential descriptor for one database session."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: DatabaseType = Field(
        default=DatabaseType.SQLSERVER,
        validation_alias=AliasChoices("type", "driver_type"),
    )
    server: Optional[str] = Field(default=None, validation_alias=AliasChoices("server", "host"))
    port: int = 1433
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    path: Optional[str] = None  # For SQLite
    driver: str = Field(default="ODBC Driver 18 for SQL Server", description="ODBC driver name")
    trust_server_certificate: bool = True
    encrypt: bool = True
    connect_timeout: int = Field(default=15, ge=1, le=600, description="Login timeout in seconds")
    application_name: Optional[str] = "SQL Console"
    display_name: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('port')
    def validate_port(cls, v):
        """Validate port number range."""
        if v < 1 or v > 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @model_validator(mode='after')
    def validate_connection_info(self):
        """Validate database-specific required fields."""
        if self.type == DatabaseType.SQLITE:
            if not (self.path or self.database):
                raise ValueError("SQLite connections require a 'path' or 'database' field")
            if not self.path:
                object.__setattr__(self, "path", self.database)
        elif not self.server:
            raise ValueError(f"{self.type.value} connections require a 'server' field")
        return self

    @property
    def display_label(self) -> str:
        """Human readable label for status bars and connection lists."""
        if self.display_name:
            return self.display_name
        if self.type == DatabaseType.SQLITE:
            return f"{self.path} (sqlite)"
        return f"{self.server} ({self.username or 'integrated'})"


class ExecutionSettings(BaseModel):
    """Defaults applied by the query executor."""
    query_timeout: int = Field(
        default=300, ge=0, description="Batch timeout in seconds, 0 disables the limit"
    )
    scalar_timeout: int = Field(default=30, ge=0, description="Timeout for scalar lookups")
    fetch_size: int = Field(default=1000, ge=1, le=100000, description="Rows fetched per round trip")


class ConsoleConfig(BaseModel):
    """Main configuration model for SQL Console."""
    connections: Dict[str, ConnectionInfo] = Field(default_factory=dict)
    default_connection: Optional[str] = None
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)

    @model_validator(mode='after')
    def validate_default_connection(self):
        """Ensure default_connection exists in connections."""
        if self.default_connection and self.default_connection not in self.connections:
            raise ValueError(f"default_connection '{self.default_connection}' not found in connections")
        return self

    @model_validator(mode='after')
    def set_default_connection(self):
        """Set default connection if not specified."""
        if not self.default_connection and self.connections:
            self.default_connection = next(iter(self.connections))
        return self

    def get_connection(self, name: Optional[str] = None) -> ConnectionInfo:
        """Look up a saved connection profile.

        Args:
            name: Profile name. If None, uses the default connection.

        Returns:
            The matching ConnectionInfo.

        Raises:
            ConfigurationError: If no such profile exists.
        """
        profile = name or self.default_connection
        if not profile or profile not in self.connections:
            available = list(self.connections.keys())
            raise ConfigurationError(f"Connection '{profile}' not found. Available connections: {available}")
        return self.connections[profile]


class EnvironmentSettings(BaseSettings):
    """Environment-specific settings."""

    model_config = SettingsConfigDict(env_prefix="SQLCONSOLE_", case_sensitive=False)

    log_level: str = Field(default="WARNING")
    debug: bool = Field(default=False)
    config_file: Optional[str] = Field(default=None)
