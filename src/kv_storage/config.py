"""Configuration and credential resolution with environment variable substitution."""

import json
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from kv_storage.exceptions import ConfigError

CF_API_URL = "https://api.cloudflare.com/client/v4"
CREDENTIALS_FILENAME = "cf-credentials.json"
KEYFILENAME_ENV = "CF_KEYFILENAME"
ACCOUNT_ID_ENV = "CF_ID"
EMAIL_ENV = "CF_EMAIL"
KEY_ENV = "CF_KEY"
API_TOKEN_ENV = "CF_API_TOKEN"

# Largest number of items the bulk endpoints accept per request
MAX_BULK_ITEMS = 10000

ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")


def substitute_env_vars(value: Any, environ: Mapping[str, str] | None = None) -> Any:
    """Recursively substitute ${VAR_NAME} patterns with environment variables."""
    env = os.environ if environ is None else environ
    if isinstance(value, str):
        def replace(match: re.Match[str]) -> str:
            var_name = match.group(1)
            env_value = env.get(var_name)
            if env_value is None:
                raise ConfigError(f"Environment variable {var_name} is not set")
            return env_value

        return ENV_VAR_PATTERN.sub(replace, value)
    elif isinstance(value, dict):
        return {k: substitute_env_vars(v, env) for k, v in value.items()}
    elif isinstance(value, list):
        return [substitute_env_vars(v, env) for v in value]
    return value


def _read_data_file(path: Path) -> Any:
    """Read a YAML or JSON document."""
    with path.open() as f:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(f)
        return json.load(f)


class Credentials(BaseModel):
    """Cloudflare account credentials.

    Either a scoped API token or the legacy email + global API key pair.
    Credential files use ``id`` for the account, as the dashboard exports it.
    """

    model_config = ConfigDict(populate_by_name=True)

    account_id: str = Field(alias="id")
    email: str | None = None
    key: str | None = None
    api_token: str | None = None

    @model_validator(mode="after")
    def _check_auth(self) -> "Credentials":
        if not self.api_token and not (self.email and self.key):
            raise ValueError("credentials need either api_token or both email and key")
        return self

    def auth_headers(self) -> dict[str, str]:
        """Headers authenticating every API request."""
        if self.api_token:
            return {"Authorization": f"Bearer {self.api_token}"}
        return {
            "X-Auth-Email": self.email or "",
            "X-Auth-Key": self.key or "",
        }


class StorageConfig(BaseModel):
    """Configuration for a storage area."""

    credentials: Credentials | None = None
    key_filename: str | None = None
    base_url: str = CF_API_URL
    timeout: float = 30.0
    page_limit: int | None = Field(default=None, ge=10, le=1000)
    use_bulk: bool = True
    bulk_batch_size: int = Field(default=MAX_BULK_ITEMS, ge=1, le=MAX_BULK_ITEMS)

    @classmethod
    def from_file(cls, path: str | Path) -> "StorageConfig":
        """Load configuration from a YAML or JSON file."""
        data = _read_data_file(Path(path)) or {}
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StorageConfig":
        """Load configuration from a dictionary."""
        data = substitute_env_vars(data)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid storage configuration: {e}") from e


@dataclass
class ApiSettings:
    """Resolved endpoint and headers for one account."""

    base_url: str
    headers: dict[str, str] = field(default_factory=dict)


def load_credentials_file(path: str | Path) -> Credentials:
    """Load credentials from a JSON or YAML key file.

    Raises:
        ConfigError: If the file is missing, unreadable or incomplete
    """
    path = Path(path)
    try:
        data = _read_data_file(path)
    except FileNotFoundError as e:
        raise ConfigError(f"Credentials file not found: {path}") from e
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read credentials file {path}: {e}") from e

    try:
        return Credentials.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid credentials in {path}: {e}") from e


def resolve_credentials(
    config: StorageConfig,
    environ: Mapping[str, str] | None = None,
    cwd: str | Path | None = None,
) -> Credentials:
    """Pick the credentials a storage area authenticates with.

    Resolution order:
        1. ``config.credentials``
        2. ``config.key_filename``
        3. the file named by ``CF_KEYFILENAME``
        4. ``CF_ID`` with ``CF_EMAIL`` + ``CF_KEY`` (or ``CF_API_TOKEN``)
        5. ``cf-credentials.json`` in ``cwd``

    Args:
        config: Storage configuration
        environ: Environment to read (defaults to ``os.environ``)
        cwd: Directory holding the default credentials file

    Returns:
        The resolved credentials

    Raises:
        ConfigError: If no source yields valid credentials
    """
    env = os.environ if environ is None else environ

    if config.credentials is not None:
        return config.credentials
    if config.key_filename:
        return load_credentials_file(config.key_filename)
    if env.get(KEYFILENAME_ENV):
        return load_credentials_file(env[KEYFILENAME_ENV])

    account_id = env.get(ACCOUNT_ID_ENV)
    if account_id and env.get(API_TOKEN_ENV):
        return Credentials(account_id=account_id, api_token=env[API_TOKEN_ENV])
    if account_id and env.get(EMAIL_ENV) and env.get(KEY_ENV):
        return Credentials(account_id=account_id, email=env[EMAIL_ENV], key=env[KEY_ENV])

    base = Path(cwd) if cwd is not None else Path.cwd()
    return load_credentials_file(base / CREDENTIALS_FILENAME)


def build_api_settings(
    config: StorageConfig,
    environ: Mapping[str, str] | None = None,
    cwd: str | Path | None = None,
) -> ApiSettings:
    """Resolve credentials and build the account-scoped API settings."""
    credentials = resolve_credentials(config, environ=environ, cwd=cwd)
    return ApiSettings(
        base_url=f"{config.base_url.rstrip('/')}/accounts/{credentials.account_id}",
        headers=credentials.auth_headers(),
    )
