"""Runtime settings with environment overrides.

Every setting has a default; ``API_WORKBENCH_*`` environment variables are
layered on top, and explicit keyword overrides (CLI flags) win over both.
"""

from typing import Literal

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from api_workbench import __version__
from api_workbench.errors import ConfigError

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_BODY_BYTES = 10 * 1024 * 1024
DEFAULT_MAX_WORKERS = 4

ENV_PREFIX = "API_WORKBENCH_"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        case_sensitive=False,
        env_ignore_empty=True,
        extra="ignore",
        frozen=True,
    )

    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0, allow_inf_nan=False)
    max_body_bytes: int = Field(default=DEFAULT_MAX_BODY_BYTES, gt=0)
    verify_tls: bool = True
    user_agent: str = f"api-workbench/{__version__}"
    max_workers: int = Field(default=DEFAULT_MAX_WORKERS, gt=0)
    log_level: Literal["debug", "info", "warning", "error"] = "warning"
    log_format: Literal["text", "json"] = "text"
    debug: bool = False

    @field_validator("log_level", "log_format", mode="before")
    @classmethod
    def _lowercase(cls, value):
        return value.lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _debug_forces_log_level(self) -> "Settings":
        if self.debug and self.log_level != "debug":
            # Frozen model: bypass __setattr__ during validation
            object.__setattr__(self, "log_level", "debug")
        return self

    @classmethod
    def from_env(cls, **overrides) -> "Settings":
        """Build settings from ``API_WORKBENCH_*`` variables plus explicit overrides."""
        values = {k: v for k, v in overrides.items() if v is not None}
        if "log_level" in values:
            # An explicit level beats API_WORKBENCH_DEBUG
            values.setdefault("debug", False)
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigError(f"Invalid settings: {e}") from e
