"""Configuration management for SQL Console."""

from sqlconsole.config.models import (
    DatabaseType,
    ConnectionInfo,
    ExecutionSettings,
    ConsoleConfig,
    EnvironmentSettings,
)
from sqlconsole.config.parser import (
    ConfigParser,
    expand_env,
    write_sample_config,
)

__all__ = [
    # Models
    "DatabaseType",
    "ConnectionInfo",
    "ExecutionSettings",
    "ConsoleConfig",
    "EnvironmentSettings",
    # Parser
    "ConfigParser",
    "expand_env",
    "write_sample_config",
]
