"""Stepwise settings: one pydantic-settings model fed by TOML and STEPWISE_* variables."""

from typing import Any

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from stepwise.config.models.engine import EngineConfig
from stepwise.config.models.observability import ObservabilityConfig
from stepwise.config.models.queue import PlanQueueConfig
from stepwise.config.models.storage import PlanStoreConfig

# Merged TOML layers, installed by get_settings() before Settings() is built
_toml_config: dict[str, Any] = {}


def set_toml_config(config: dict[str, Any]) -> None:
    """Install the merged TOML layers read by TomlConfigSettingsSource."""
    global _toml_config
    _toml_config = config


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """Serves top-level TOML sections as field values."""

    def get_field_value(
        self, field: Any, field_name: str  # noqa: ARG002
    ) -> tuple[Any, str, bool]:
        value = _toml_config.get(field_name)
        return value, field_name, value is not None

    def __call__(self) -> dict[str, Any]:
        """Return the TOML sections that map to settings fields."""
        return {
            name: _toml_config[name]
            for name in self.settings_cls.model_fields
            if name in _toml_config
        }


class Settings(BaseSettings):
    """Top-level configuration: storage, queue, engine and observability.

    Later sources win: model defaults, config/default.toml,
    config/{STEPWISE_ENV}.toml, then STEPWISE_* variables with "__" between
    nesting levels (STEPWISE_ENGINE__LEASE__BACKEND=redis). Constructor
    arguments beat all of them.
    """

    model_config = SettingsConfigDict(
        env_prefix="STEPWISE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="stepwise", description="Application name for logging")
    debug: bool = Field(default=False, description="Enable debug mode")

    storage: PlanStoreConfig = Field(
        default_factory=PlanStoreConfig,
        description="Plan store backend configuration",
    )
    queue: PlanQueueConfig = Field(
        default_factory=PlanQueueConfig,
        description="Delay queue configuration",
    )
    engine: EngineConfig = Field(
        default_factory=EngineConfig,
        description="Plan execution engine configuration",
    )
    observability: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig,
        description="Observability configuration",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Constructor arguments, then environment, then TOML."""
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls),
        )
