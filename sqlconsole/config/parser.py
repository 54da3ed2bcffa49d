"""Loading connection profiles and execution settings from YAML.

A configuration file names connection profiles under ``connections`` and
may pull shared profiles from other files through ``include``. String
values can reference the environment as ``${NAME}`` (must be set) or
``${NAME:-fallback}``.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Union

import yaml
from pydantic import ValidationError

from sqlconsole.config.models import ConnectionInfo, ConsoleConfig, EnvironmentSettings
from sqlconsole.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

SEARCH_PATHS = ("sqlconsole.yaml", "sqlconsole.yml", "config/sqlconsole.yaml")

_ENV_REFERENCE = re.compile(r"\$\{\s*(?P<name>[A-Za-z_][A-Za-z0-9_]*)\s*(?::-(?P<fallback>[^}]*))?\}")

SAMPLE_CONFIG = """\
# SQL Console connection profiles.
# Values may reference the environment: ${NAME} or ${NAME:-fallback}.

connections:
  local:
    type: sqlserver
    server: localhost
    port: 1433
    database: master
    username: sa
    password: ${MSSQL_SA_PASSWORD:-change_me}
    encrypt: true
    trust_server_certificate: true
    connect_timeout: 15
    display_name: Local SQL Server

  scratch:
    type: sqlite
    path: ./scratch.db

default_connection: local

execution:
  query_timeout: 300   # seconds, 0 disables the limit
  scalar_timeout: 30
  fetch_size: 1000
"""


class ConfigParser:
    """Reads console configuration files into a validated ConsoleConfig."""

    def __init__(self, env_settings: Optional[EnvironmentSettings] = None) -> None:
        self.env_settings = env_settings or EnvironmentSettings()

    def locate(self, config_path: Optional[PathLike] = None) -> Path:
        """Pick the file to load.

        An explicit path wins, then ``SQLCONSOLE_CONFIG_FILE``, then the
        first of :data:`SEARCH_PATHS` that exists in the working directory.

        Raises:
            ConfigurationError: If no candidate file exists.
        """
        if config_path:
            path = Path(config_path)
            if not path.is_file():
                raise ConfigurationError(f"Configuration file '{config_path}' not found")
            return path

        candidates: List[Path] = []
        if self.env_settings.config_file:
            candidates.append(Path(self.env_settings.config_file))
        candidates.extend(Path.cwd() / name for name in SEARCH_PATHS)

        for candidate in candidates:
            if candidate.is_file():
                return candidate
        searched = ", ".join(str(c) for c in candidates)
        raise ConfigurationError(f"No configuration file found (searched: {searched})")

    def load_config(self, config_path: Optional[PathLike] = None) -> ConsoleConfig:
        """Load, expand and validate a configuration file.

        Raises:
            ConfigurationError: If the file is missing, empty, not YAML, refers
                to an unset environment variable or fails validation.
        """
        path = self.locate(config_path)
        document = self._read_document(path, visited=set())
        try:
            config = ConsoleConfig.model_validate(document)
        except ValidationError as e:
            raise ConfigurationError(
                f"Configuration validation failed for '{path}': {_describe_errors(e)}",
                details={'path': str(path)},
            ) from e

        logger.debug(f"Loaded {len(config.connections)} connection profile(s) from {path}")
        return config

    def load_profile(self, name: Optional[str] = None, config_path: Optional[PathLike] = None) -> ConnectionInfo:
        """Connection profile ``name`` (or the default one), keyed by its profile name."""
        config = self.load_config(config_path)
        info = config.get_connection(name)
        return info.model_copy(update={'id': name or config.default_connection})

    def _read_document(self, path: Path, visited: Set[Path]) -> Dict[str, Any]:
        """One file with its includes merged underneath it."""
        resolved = path.resolve()
        if resolved in visited:
            raise ConfigurationError(f"Configuration include cycle through '{path}'")
        visited.add(resolved)

        try:
            text = path.read_text(encoding='utf-8')
        except FileNotFoundError as e:
            raise ConfigurationError(f"Configuration file '{path}' not found") from e

        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in '{path}': {e}") from e

        if not document:
            raise ConfigurationError(f"Configuration file '{path}' is empty")
        if not isinstance(document, dict):
            raise ConfigurationError(f"Configuration file '{path}' must contain a mapping")

        document = expand_env(document)
        includes = document.pop('include', None) or []
        if isinstance(includes, str):
            includes = [includes]

        merged: Dict[str, Any] = {}
        for include in includes:
            include_path = path.parent / include
            if not include_path.is_file():
                raise ConfigurationError(f"Included file '{include_path}' not found")
            merged = _overlay(merged, self._read_document(include_path, visited))
        return _overlay(merged, document)


def expand_env(value: Any) -> Any:
    """Replace ``${NAME}`` / ``${NAME:-fallback}`` references in every string.

    Raises:
        ConfigurationError: If a reference without fallback names an unset variable.
    """
    if isinstance(value, dict):
        return {key: expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env(item) for item in value]
    if not isinstance(value, str):
        return value

    def substitute(match: "re.Match[str]") -> str:
        name, fallback = match.group('name'), match.group('fallback')
        resolved = os.environ.get(name)
        if resolved is not None:
            return resolved
        if fallback is not None:
            return fallback
        raise ConfigurationError(f"Required environment variable '{name}' is not set")

    return _ENV_REFERENCE.sub(substitute, value)


def _overlay(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Nested merge where ``override`` wins; profiles merge field by field."""
    result = dict(base)
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = _overlay(current, value)
        else:
            result[key] = value
    return result


def _describe_errors(error: ValidationError) -> str:
    return "; ".join(_describe_error(entry) for entry in error.errors())


def _describe_error(entry: Dict[str, Any]) -> str:
    location: Iterable[Any] = entry.get('loc', ())
    parts = [str(part) for part in location]
    if len(parts) >= 2 and parts[0] == 'connections':
        where = f"profile '{parts[1]}'"
        if len(parts) > 2:
            where += f" field '{'.'.join(parts[2:])}'"
    else:
        where = ".".join(parts) or "configuration"
    return f"{where}: {entry.get('msg', 'invalid value')}"


def write_sample_config(output_path: PathLike) -> Path:
    """Write a commented starter configuration and return its path."""
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(SAMPLE_CONFIG, encoding='utf-8')
    return path
