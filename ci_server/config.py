"""Configuration settings for ci_server.

Uses pydantic-settings for config parsing from environment variables,
an optional .env file and an optional JSON configuration file.
Configuration precedence: CLI flags > env vars > .env > config.json > defaults.
"""

import json
import os
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, SecretStr
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

DEFAULT_STEPS = ["validate-json", "pawn-compile", "javascript-tests"]


def _default_config_file() -> Path:
    """Return the JSON configuration file, honouring CI_SERVER_CONFIG_FILE."""
    return Path(os.environ.get("CI_SERVER_CONFIG_FILE", "config.json"))


def _default_storage_path() -> Path:
    """Return the default build record directory."""
    return Path.home() / ".local" / "share" / "ci-server" / "builds"


def _default_checkout_dir() -> Path:
    """Return the default shared working tree."""
    return Path.cwd().parent / "playground"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the CI_SERVER_ prefix,
    falling back to the keys of the JSON configuration file.
    """

    model_config = SettingsConfigDict(
        env_prefix="CI_SERVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Authentication
    secret: SecretStr = Field(
        default=SecretStr(""),
        description="Shared secret used to sign incoming webhooks",
    )
    oauth_token: SecretStr = Field(
        default=SecretStr(""),
        description="Token used to authenticate against the statuses API",
    )

    # Network
    endpoint: str = Field(
        default="http://localhost:8080",
        description="Public base URL of this server, used for status links",
    )
    bind_host: str = Field(default="127.0.0.1", description="Interface to listen on")
    bind_port: int = Field(default=8080, ge=1, le=65535, description="Port to listen on")

    # Paths
    storage_path: Path = Field(
        default_factory=_default_storage_path,
        description="Directory holding one JSON file per build",
    )
    checkout_dir: Path = Field(
        default_factory=_default_checkout_dir,
        description="The shared working tree builds are run against",
    )
    compiler_path: Path = Field(
        default=Path("tools/lvpcc/pawncc"),
        description="Pawn compiler binary",
    )
    server_dir: Path = Field(
        default=Path("../server"),
        description="Directory the JavaScript test runner is started in",
    )
    test_runner_dir: Path = Field(
        default=Path("../playgroundjs-plugin/src/out"),
        description="Directory containing the JavaScript test runner",
    )

    # Steps
    steps: list[str] = Field(
        default_factory=lambda: list(DEFAULT_STEPS),
        description="Identifiers of the steps to run for every build",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Timeouts (in seconds)
    command_timeout: int = Field(
        default=30,
        ge=1,
        description="Timeout for each repository update command",
    )
    diff_timeout: int = Field(
        default=30,
        ge=1,
        description="Timeout for downloading a pull request diff",
    )
    status_timeout: int = Field(
        default=30,
        ge=1,
        description="Timeout for posting a status update",
    )
    compile_timeout: int = Field(
        default=180,
        ge=1,
        description="Timeout for the Pawn compilation step",
    )
    test_timeout: int = Field(
        default=30,
        ge=1,
        description="Timeout for the JavaScript tests step",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Add the JSON configuration file below the environment sources."""
        json_settings = JsonConfigSettingsSource(
            settings_cls, json_file=_default_config_file()
        )
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            json_settings,
            file_secret_settings,
        )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment and configuration file.
    """
    return Settings()


def settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Render settings as a JSON-compatible dict with secrets masked."""
    data = settings.model_dump(mode="json")
    for key in ("secret", "oauth_token"):
        data[key] = "********" if getattr(settings, key).get_secret_value() else ""
    return data


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings, secrets masked.
    """
    if settings is None:
        settings = get_settings()
    return json.dumps(settings_to_dict(settings), indent=2)


__all__ = [
    "DEFAULT_STEPS",
    "Settings",
    "get_settings",
    "print_settings_json",
    "settings_to_dict",
]
