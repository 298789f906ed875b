"""
Project configuration loaded from ``tabulary.toml``.

Relative paths are resolved against the directory holding the config file.
A handful of environment variables override file values:

    TABULARY_DATABASE       [database] path
    TABULARY_JWT_SECRET     signing secret (never read from the file)
    TABULARY_AUTH_ENABLED   [auth] enabled ("1"/"true"/"yes" or "0"/"false"/"no")
    TABULARY_LOG_LEVEL      [logging] level
"""

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from tabulary.specs.permission import ConditionOverride

CONFIG_FILE_NAME = "tabulary.toml"

ENV_DATABASE = "TABULARY_DATABASE"
ENV_JWT_SECRET = "TABULARY_JWT_SECRET"
ENV_AUTH_ENABLED = "TABULARY_AUTH_ENABLED"
ENV_LOG_LEVEL = "TABULARY_LOG_LEVEL"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


class ConfigError(ValueError):
    """Raised for invalid configuration values."""


@dataclass
class DatabaseConfig:
    path: Path = field(default_factory=lambda: Path(".tabulary/data.db"))
    schema_file: Path | None = None  # YAML tables created when missing


@dataclass
class ApiConfig:
    prefix: str = ""
    default_limit: int = 50
    max_limit: int = 500


@dataclass
class AuthConfig:
    enabled: bool = True
    algorithm: str = "HS256"
    issuer: str = "tabulary"
    access_token_minutes: int = 60
    secret: str | None = None  # From TABULARY_JWT_SECRET only


@dataclass
class PermissionsConfig:
    sync_on_startup: bool = True
    overrides: dict[str, ConditionOverride] = field(default_factory=dict)


@dataclass
class LoggingConfig:
    dir: Path | None = field(default_factory=lambda: Path(".tabulary/logs"))
    level: str = "INFO"


@dataclass
class TabularyConfig:
    """Complete project configuration."""

    name: str = "tabulary"
    root: Path = field(default_factory=Path.cwd)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    permissions: PermissionsConfig = field(default_factory=PermissionsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _parse_bool(raw: str, name: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _resolve(root: Path, value: str | Path | None) -> Path | None:
    if value is None or value == "":
        return None
    path = Path(value)
    return path if path.is_absolute() else root / path


def _normalise_prefix(prefix: str) -> str:
    prefix = prefix.strip().rstrip("/")
    if prefix and not prefix.startswith("/"):
        prefix = f"/{prefix}"
    return prefix


def parse_config(
    data: Mapping[str, Any],
    root: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> TabularyConfig:
    """
    Build a TabularyConfig from parsed TOML data and the environment.

    Args:
        data: Parsed ``tabulary.toml`` content (may be empty)
        root: Directory relative paths are resolved against
        environ: Environment mapping; defaults to ``os.environ``
    """
    root = root or Path.cwd()
    environ = os.environ if environ is None else environ

    project = data.get("project", {})
    db_data = data.get("database", {})
    api_data = data.get("api", {})
    auth_data = data.get("auth", {})
    perm_data = data.get("permissions", {})
    log_data = data.get("logging", {})

    database = DatabaseConfig(
        path=_resolve(root, environ.get(ENV_DATABASE) or db_data.get("path", ".tabulary/data.db")),
        schema_file=_resolve(root, db_data.get("schema_file")),
    )

    api = ApiConfig(
        prefix=_normalise_prefix(api_data.get("prefix", "")),
        default_limit=int(api_data.get("default_limit", 50)),
        max_limit=int(api_data.get("max_limit", 500)),
    )
    if api.default_limit < 0 or api.max_limit < 1:
        raise ConfigError("[api] default_limit must be >= 0 and max_limit >= 1")

    enabled = auth_data.get("enabled", True)
    if ENV_AUTH_ENABLED in environ:
        enabled = _parse_bool(environ[ENV_AUTH_ENABLED], ENV_AUTH_ENABLED)
    auth = AuthConfig(
        enabled=bool(enabled),
        algorithm=auth_data.get("algorithm", "HS256"),
        issuer=auth_data.get("issuer", "tabulary"),
        access_token_minutes=int(auth_data.get("access_token_minutes", 60)),
        secret=environ.get(ENV_JWT_SECRET) or None,
    )

    overrides = {
        table: ConditionOverride.model_validate(override or {})
        for table, override in perm_data.get("overrides", {}).items()
    }
    permissions = PermissionsConfig(
        sync_on_startup=bool(perm_data.get("sync_on_startup", True)),
        overrides=overrides,
    )

    log_dir = log_data.get("dir", ".tabulary/logs")
    logging_config = LoggingConfig(
        dir=_resolve(root, log_dir) if log_dir else None,
        level=str(environ.get(ENV_LOG_LEVEL) or log_data.get("level", "INFO")).upper(),
    )

    return TabularyConfig(
        name=project.get("name", "tabulary"),
        root=root,
        database=database,
        api=api,
        auth=auth,
        permissions=permissions,
        logging=logging_config,
    )


def load_config(path: str | Path | None = None) -> TabularyConfig:
    """
    Load configuration from ``path`` (default ``./tabulary.toml``).

    A missing file yields the defaults, still subject to environment overrides.
    """
    path = Path(path) if path is not None else Path.cwd() / CONFIG_FILE_NAME
    data: dict[str, Any] = {}
    if path.is_file():
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    return parse_config(data, root=path.parent.resolve())
