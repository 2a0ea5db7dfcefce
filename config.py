"""
Engine configuration.

Values come from the environment (prefix ``OPD_``) or a local ``.env`` file,
validated through pydantic-settings.
"""
from __future__ import annotations

import logging
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="OPD_", env_file=".env", extra="ignore")

    # Skip the "slot already over" filter when picking slots (backfill, demos)
    relaxed_time: bool = False
    log_level: str = "INFO"
    app_title: str = "OPD Token Allocation Engine"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level


@lru_cache
def get_settings() -> EngineSettings:
    return EngineSettings()


def configure_logging(settings: EngineSettings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
