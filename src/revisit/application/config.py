from datetime import timedelta
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from revisit.domain.constants import (
    ARCHIVE_AFTER_DAYS,
    DEFAULT_DUE_LIMIT,
    DEFAULT_MAX_NEW_CARDS,
    DEFAULT_MAX_SESSIONS,
    DEFAULT_SESSION_TTL_MINUTES,
    DEFAULT_TARGET_CARDS,
    MIN_EASINESS_FACTOR,
)

CONFIG_FILES = [
    Path.home() / ".config/revisit/config.toml",
    Path.home() / ".revisit.toml",
]


class AppConfig(BaseSettings):
    """
    Configuration model for revisit.
    Supports loading from:
    1. Environment variables (REVISIT_*)
    2. Config file (~/.config/revisit/config.toml)
    3. Manual overrides (CLI / server)
    """

    model_config = SettingsConfigDict(
        env_prefix="REVISIT_",
        extra="ignore",
    )

    # Storage
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".local/share/revisit")
    backend: Literal["json", "memory"] = "json"

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Sessions
    default_target_cards: int = Field(default=DEFAULT_TARGET_CARDS, ge=1)
    default_max_new_cards: int = Field(default=DEFAULT_MAX_NEW_CARDS, ge=0)
    session_ttl_minutes: int = Field(default=DEFAULT_SESSION_TTL_MINUTES, ge=1)
    max_sessions: int = Field(default=DEFAULT_MAX_SESSIONS, ge=1)

    # Due selector / archival
    due_limit: int = Field(default=DEFAULT_DUE_LIMIT, ge=1)
    archive_after_days: int = Field(default=ARCHIVE_AFTER_DAYS, ge=0)

    # Scheduler policy: None means the easiness factor has no ceiling
    max_easiness_factor: float | None = None

    # Server
    host: str = "127.0.0.1"
    port: int = 8787

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

        # First existing file wins
        toml_file = next((f for f in CONFIG_FILES if f.exists()), None)

        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (
            init_settings,
            env_settings,
        )

    @field_validator("data_dir", mode="before")
    @classmethod
    def resolve_data_dir(cls, v: Any) -> Path:
        return Path(v).expanduser().resolve()

    @field_validator("max_easiness_factor")
    @classmethod
    def check_ceiling(cls, v: float | None) -> float | None:
        if v is not None and v < MIN_EASINESS_FACTOR:
            raise ValueError(f"max_easiness_factor must be >= {MIN_EASINESS_FACTOR}")
        return v

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(minutes=self.session_ttl_minutes)


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/revisit/config.toml (if exists)
    3. Environment variables (REVISIT_*)
    4. cli_overrides (non-None values only)
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    return AppConfig(**overrides)
