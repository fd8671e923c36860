from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from kioku.domain import constants as c
from kioku.domain.errors import ConfigError

from .scheduler import SchedulerParams
from .write_queue import RetryPolicy


def config_file_path() -> Path:
    return Path.home() / ".config/kioku/config.toml"


class AppConfig(BaseSettings):
    """
    Configuration model for kioku.
    Supports loading from:
    1. Environment variables (KIOKU_*)
    2. Config file (~/.config/kioku/config.toml)
    3. Manual overrides (CLI)
    """

    model_config = SettingsConfigDict(
        env_prefix="KIOKU_",
        extra="ignore",
    )

    # Storage
    backend: Literal["sqlite", "rest"] = "sqlite"
    db_path: Path = Field(default_factory=lambda: Path.home() / ".config/kioku/kioku.db")
    catalog_path: Path | None = None
    rest_url: str | None = None
    rest_api_key: str | None = None

    # Sessions
    user_id: str = c.DEFAULT_USER_ID
    session_limit: int = Field(default=c.DEFAULT_SESSION_LIMIT, ge=0)
    max_open_sessions: int = Field(default=c.MAX_OPEN_SESSIONS, ge=1)

    # Scheduling formula
    min_ease: float = c.MIN_EASE
    max_ease: float = c.MAX_EASE
    initial_ease: float = c.INITIAL_EASE
    again_ease_penalty: float = c.AGAIN_EASE_PENALTY
    hard_ease_penalty: float = c.HARD_EASE_PENALTY
    easy_ease_bonus: float = c.EASY_EASE_BONUS
    first_interval_days: int = Field(default=c.FIRST_INTERVAL_DAYS, ge=1)
    second_interval_days: int = Field(default=c.SECOND_INTERVAL_DAYS, ge=1)
    hard_interval_factor: float = Field(default=c.HARD_INTERVAL_FACTOR, gt=0)
    easy_interval_factor: float = Field(default=c.EASY_INTERVAL_FACTOR, gt=0)
    max_interval_days: int = Field(default=c.MAX_INTERVAL_DAYS, ge=1)

    # Background writes
    write_max_attempts: int = Field(default=c.WRITE_MAX_ATTEMPTS, ge=1)
    write_base_delay: float = Field(default=c.WRITE_BASE_DELAY, ge=0)
    write_max_delay: float = Field(default=c.WRITE_MAX_DELAY, ge=0)

    verbose: int = 1

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        # CLI overrides beat env vars, which beat the config file
        toml_file = config_file_path()
        if toml_file.exists():
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (init_settings, env_settings)

    @field_validator("db_path", "catalog_path", mode="before")
    @classmethod
    def resolve_path(cls, v: Any) -> Path | None:
        if v is None or v == "":
            return None
        return Path(v).expanduser().resolve()

    def scheduler_params(self) -> SchedulerParams:
        if self.min_ease > self.max_ease:
            raise ConfigError(
                f"min_ease ({self.min_ease}) must not exceed max_ease ({self.max_ease})"
            )
        return SchedulerParams(
            min_ease=self.min_ease,
            max_ease=self.max_ease,
            initial_ease=self.initial_ease,
            again_ease_penalty=self.again_ease_penalty,
            hard_ease_penalty=self.hard_ease_penalty,
            easy_ease_bonus=self.easy_ease_bonus,
            first_interval_days=self.first_interval_days,
            second_interval_days=self.second_interval_days,
            hard_interval_factor=self.hard_interval_factor,
            easy_interval_factor=self.easy_interval_factor,
            max_interval_days=self.max_interval_days,
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.write_max_attempts,
            base_delay=self.write_base_delay,
            max_delay=self.write_max_delay,
        )


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/kioku/config.toml (if exists)
    3. Environment variables (KIOKU_*)
    4. cli_overrides (passed from Typer), None values ignored
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    config = AppConfig(**overrides)

    if config.backend == "rest" and not config.rest_url:
        raise ConfigError("backend 'rest' requires rest_url (KIOKU_REST_URL)")

    return config
