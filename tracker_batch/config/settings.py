"""
Configuration system using Pydantic for type-safe settings management.

This module provides the settings object passed explicitly to the
authorization flow, the Tracker client and the batch processor: the
organization id, the OAuth application credentials, API endpoints, file
locations and pacing.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from urllib.parse import urlsplit

import yaml
from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tracker_batch.exceptions import ConfigurationError

REDIRECT_PATH = "/redirect"

WILDCARD_HOSTS = frozenset({"0.0.0.0", "::"})
LOOPBACK_HOSTS = frozenset({"127.0.0.1", "::1", "localhost"})


def _host_aliases(listen_host: str) -> frozenset[str]:
    if listen_host in LOOPBACK_HOSTS:
        return LOOPBACK_HOSTS
    return frozenset({listen_host})


class OAuthConfig(BaseModel):
    """OAuth application and redirect listener configuration.

    Supports environment references for the secret:
    - client_secret: "${TRACKER_CLIENT_SECRET}"
    """

    client_id: str = Field(default="", description="OAuth application client id")
    client_secret: SecretStr = Field(default=SecretStr(""), description="OAuth application client secret")
    redirect_uri: str = Field(
        default="http://127.0.0.1:8080/redirect",
        description="Redirect URI registered for the OAuth application",
    )
    base_url: str = Field(default="https://oauth.yandex.ru", description="OAuth provider base URL")
    listen_host: str = Field(default="127.0.0.1", description="Loopback address of the redirect listener")
    listen_port: int = Field(default=8080, ge=1, le=65535, description="Port of the redirect listener")
    timeout: float = Field(default=60.0, gt=0, description="Seconds to wait for the OAuth redirect")
    token_file: str = Field(default="token.json", description="Where the access token is cached")

    @model_validator(mode="after")
    def validate_redirect_uri(self) -> OAuthConfig:
        """Require the redirect URI to point at the redirect listener.

        An empty URI is left to the authorization flow, which reports it as a
        missing setting.
        """
        if not self.redirect_uri:
            return self

        parts = urlsplit(self.redirect_uri)
        if parts.scheme != "http":
            raise ValueError(f"redirect_uri must use http://, got: {self.redirect_uri}")
        if parts.path != REDIRECT_PATH:
            raise ValueError(f"redirect_uri path must be {REDIRECT_PATH}, got: {parts.path or '/'}")
        if (parts.port or 80) != self.listen_port:
            raise ValueError(f"redirect_uri port {parts.port or 80} does not match listen_port {self.listen_port}")
        if self.listen_host not in WILDCARD_HOSTS and parts.hostname not in _host_aliases(self.listen_host):
            raise ValueError(f"redirect_uri host {parts.hostname} does not match listen_host {self.listen_host}")
        return self


class TrackerApiConfig(BaseModel):
    """Tracker REST API configuration."""

    base_url: str = Field(default="https://api.tracker.yandex.net", description="Tracker API base URL")
    request_timeout: float = Field(default=30.0, gt=0, description="HTTP timeout per request in seconds")


class BatchConfig(BaseModel):
    """Batch processing configuration."""

    tasks_file: str = Field(default="tasks.json", description="Batch file, rewritten after every mutation")
    default_queue: str | None = Field(default=None, description="Queue used when a creation has no queue")
    request_delay: float = Field(default=1.0, ge=0, description="Seconds to wait between remote calls")


class TrackerSettings(BaseSettings):
    """Main tracker-batch settings.

    Combines all configuration sections and provides methods for loading
    from YAML files with environment variable interpolation.
    """

    model_config = SettingsConfigDict(
        env_prefix="TRACKER_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    organization_id: str = Field(..., description="Organization id sent as X-Org-ID")
    oauth: OAuthConfig = Field(default_factory=OAuthConfig)
    api: TrackerApiConfig = Field(default_factory=TrackerApiConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)

    @property
    def token_path(self) -> Path:
        return Path(self.oauth.token_file)

    @property
    def tasks_path(self) -> Path:
        return Path(self.batch.tasks_file)

    @classmethod
    def from_yaml(cls, config_path: str) -> TrackerSettings:
        """Load settings from YAML file with environment variable interpolation.

        Supports ${VAR_NAME} syntax for environment variable substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            TrackerSettings instance

        Raises:
            ConfigurationError: If config file is invalid or missing required fields
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            yaml_content = config_file.read_text()
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")

        try:
            return cls(**config_dict)
        except Exception as e:
            raise ConfigurationError(f"Failed to validate configuration: {e}") from e

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Interpolate ${VAR_NAME} placeholders with environment variables.

        Supports two syntaxes:
        - ${VAR_NAME} - Required environment variable (raises if not set)
        - ${VAR_NAME:-default} - Optional with default value

        YAML comment lines are left untouched.

        Raises:
            ValueError: If a required environment variable is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            value = os.getenv(var_name)

            if value is not None:
                return value
            elif default_value is not None:
                return default_value
            else:
                raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            if line.lstrip().startswith("#"):
                return line
            return pattern.sub(replace_var, line)

        return "\n".join(process_line(line) for line in content.split("\n"))


CONFIG_TEMPLATE = """\
# tracker-batch configuration
organization_id: "${TRACKER_ORG_ID:-your-organization-id}"

oauth:
  client_id: "your-oauth-client-id"
  client_secret: "${TRACKER_CLIENT_SECRET:-your-oauth-client-secret}"
  redirect_uri: "http://127.0.0.1:8080/redirect"
  # base_url: "https://oauth.yandex.ru"
  # listen_host: "127.0.0.1"
  # listen_port: 8080
  # timeout: 60
  # token_file: "token.json"

api:
  base_url: "https://api.tracker.yandex.net"
  request_timeout: 30

batch:
  tasks_file: "tasks.json"
  # default_queue: "DEV"
  request_delay: 1.0
"""


def write_config_template(path: str | Path, overwrite: bool = False) -> Path:
    """Write an example configuration file.

    Raises:
        ConfigurationError: If the file exists (and ``overwrite`` is False)
            or cannot be written.
    """
    target = Path(path)
    if target.exists() and not overwrite:
        raise ConfigurationError(f"Configuration file already exists: {target}")
    try:
        target.write_text(CONFIG_TEMPLATE)
    except OSError as e:
        raise ConfigurationError(f"Cannot write configuration file: {target}") from e
    return target
