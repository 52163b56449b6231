from __future__ import annotations

import os
import shlex
from pathlib import Path
from typing import Any, List

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError

DEFAULT_USER_AGENT = "GfsCache/0.1 (contact: you@example.com)"
DEFAULT_BASE_URL = "https://nomads.ncep.noaa.gov/cgi-bin/filter_gfs_1p00.pl"


class ProviderSettings(BaseModel):
    base_url: str = Field(default=DEFAULT_BASE_URL)
    product: str = Field(default="pgrb2.1p00")
    variables: List[str] = Field(default_factory=lambda: ["TMP", "UGRD", "VGRD"])
    levels: List[str] = Field(default_factory=lambda: ["10_m_above_ground", "surface"])

    @field_validator("variables", "levels")
    @classmethod
    def _not_empty(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("at least one entry is required")
        return value


class AppSettings(BaseModel):
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    interval_hours: int = Field(default=6, ge=1, le=24)
    max_retries: int = Field(default=3, ge=0, le=10)
    backoff_seconds: float = Field(default=1.0, ge=0.0)
    lookback_days: float = Field(default=10.0, gt=0.0)
    max_age_hours: float = Field(default=24.0, gt=0.0)
    cache_dir: Path = Field(default=Path("data"))
    converter_command: str = Field(default="converter/bin/grib2json")
    converter_timeout: float = Field(default=300.0, gt=0.0)
    request_timeout: float = Field(default=60.0, gt=0.0)
    background_workers: int = Field(default=2, ge=1)
    user_agent: str = Field(default=DEFAULT_USER_AGENT)
    logs_dir: Path = Field(default=Path("logs"))
    log_level: str = Field(default="INFO")

    @field_validator("interval_hours")
    @classmethod
    def _divides_day(cls, value: int) -> int:
        if 24 % value:
            raise ValueError("interval_hours must divide 24")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @property
    def raw_dir(self) -> Path:
        return self.cache_dir / "grib-data"

    @property
    def json_dir(self) -> Path:
        return self.cache_dir / "json-data"

    @property
    def converter_argv(self) -> list[str]:
        return shlex.split(self.converter_command)


def _env_list(key: str) -> list[str] | None:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def _pick(cli_args: dict[str, Any], cli_key: str, env_key: str) -> Any | None:
    value = cli_args.get(cli_key)
    if value is not None:
        return value
    value = os.getenv(env_key)
    if value is None or value.strip() == "":
        return None
    return value


def load_settings(cli_args: dict[str, Any] | None = None) -> AppSettings:
    load_dotenv()
    cli_args = cli_args or {}

    provider: dict[str, Any] = {}
    for field, env_key in (("base_url", "GFS_BASE_URL"), ("product", "GFS_PRODUCT")):
        value = _pick(cli_args, field, env_key)
        if value is not None:
            provider[field] = value
    for field, env_key in (("variables", "GFS_VARIABLES"), ("levels", "GFS_LEVELS")):
        values = _env_list(env_key)
        if values is not None:
            provider[field] = values

    data: dict[str, Any] = {}
    for field, env_key in (
        ("max_retries", "FETCH_MAX_RETRIES"),
        ("backoff_seconds", "FETCH_BACKOFF_SECONDS"),
        ("lookback_days", "LOOKBACK_DAYS"),
        ("max_age_hours", "CACHE_MAX_AGE_HOURS"),
        ("cache_dir", "CACHE_DIR"),
        ("converter_command", "CONVERTER_COMMAND"),
        ("converter_timeout", "CONVERTER_TIMEOUT"),
        ("request_timeout", "REQUEST_TIMEOUT"),
        ("background_workers", "BACKGROUND_WORKERS"),
        ("user_agent", "USER_AGENT"),
        ("logs_dir", "LOGS_DIR"),
        ("log_level", "LOG_LEVEL"),
    ):
        value = _pick(cli_args, field, env_key)
        if value is not None:
            data[field] = value

    try:
        settings = AppSettings(provider=ProviderSettings(**provider), **data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    settings.cache_dir = settings.cache_dir.expanduser()
    settings.logs_dir = settings.logs_dir.expanduser()
    return settings
