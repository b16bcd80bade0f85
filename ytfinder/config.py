from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".ytfinder"
DEFAULT_INDEX_PATH = "/my-channel/videos"
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = ("telemetry_enabled",)


class ConfigError(ValueError):
    """Raised when required runtime configuration is missing or inconsistent."""


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    Every option is read from `YTFINDER_*` environment variables (or `.env`).
    The upstream index base URL is the only required option.
    """

    model_config = SettingsConfigDict(
        env_prefix="YTFINDER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # Upstream index.
    index_base_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "index_base_url",
            "YTFINDER_INDEX_BASE_URL",
            "CF_WORKER_BASE_URL",
        ),
        description=(
            "Base URL of the channel index service. Also read from CF_WORKER_BASE_URL "
            "for compatibility with existing worker deployments."
        ),
    )
    index_path: str = Field(
        default=DEFAULT_INDEX_PATH,
        description="Sub-path appended to the base URL for the video index document.",
    )
    index_user_agent: str = Field(
        default="ytfinder/0.1",
        description="User-Agent sent to the index service.",
    )

    # Stale-while-revalidate cache.
    cache_soft_ttl_seconds: float = Field(
        default=60.0,
        ge=0,
        description="Age after which cached videos are served as stale and refreshed in background.",
    )
    cache_hard_ttl_seconds: float = Field(
        default=86_400.0,
        ge=0,
        description="Age after which cached videos are flagged as expired (still served).",
    )
    foreground_timeout_seconds: float = Field(
        default=3.0,
        gt=0,
        description="Timeout for the blocking index fetch performed on an empty cache.",
    )
    background_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Timeout for background refresh fetches.",
    )

    # Tool output.
    default_page_size: int = Field(
        default=3,
        ge=1,
        description="Page size used when a tool request does not pass one.",
    )
    max_page_size: int = Field(
        default=20,
        ge=1,
        description="Upper bound for tool page sizes.",
    )

    # Debug surface.
    debug_token: str | None = Field(
        default=None,
        description="Shared secret required as `?token=` on `/debug/cache` when set.",
    )

    # Logging.
    log_dir: Path | None = Field(
        default=Path(DEFAULT_DATA_DIR) / "logs",
        description="Directory for log files. Empty disables file logging.",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @field_validator("index_base_url", mode="before")
    @classmethod
    def _normalize_index_base_url(cls, value: Any) -> str | None:
        normalized = _normalize_optional_text(value)
        if normalized is None:
            return None
        return normalized.rstrip("/")

    @field_validator("index_path", mode="before")
    @classmethod
    def _normalize_index_path(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("YTFINDER_INDEX_PATH must be a string.")
        normalized = value.strip().strip("/")
        if not normalized:
            raise ValueError("YTFINDER_INDEX_PATH must not be empty.")
        return f"/{normalized}"

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("YTFINDER_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("YTFINDER_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("log_dir", mode="before")
    @classmethod
    def _normalize_log_dir(cls, value: Any) -> Path | None:
        if value is None:
            return None
        if isinstance(value, str) and not value.strip():
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator("debug_token", mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)

    @property
    def index_url(self) -> str:
        if self.index_base_url is None:
            raise ConfigError("YTFINDER_INDEX_BASE_URL is not configured.")
        return f"{self.index_base_url}{self.index_path}"


def _validate_runtime_configuration(settings: AppSettings) -> None:
    errors: list[str] = []

    if settings.index_base_url is None:
        errors.append("YTFINDER_INDEX_BASE_URL (or CF_WORKER_BASE_URL) is required.")
    elif not settings.index_base_url.startswith(("http://", "https://")):
        errors.append(
            f"YTFINDER_INDEX_BASE_URL must be an http(s) URL: {settings.index_base_url}"
        )
    if settings.cache_hard_ttl_seconds < settings.cache_soft_ttl_seconds:
        errors.append(
            "YTFINDER_CACHE_HARD_TTL_SECONDS must be greater than or equal to "
            "YTFINDER_CACHE_SOFT_TTL_SECONDS."
        )
    if settings.default_page_size > settings.max_page_size:
        errors.append(
            "YTFINDER_DEFAULT_PAGE_SIZE must not exceed YTFINDER_MAX_PAGE_SIZE."
        )

    if errors:
        bullets = "\n".join(f"- {message}" for message in errors)
        raise ConfigError(f"Invalid runtime configuration:\n{bullets}")


def load_settings(*, validate: bool = True) -> AppSettings:
    settings = AppSettings()
    if validate:
        _validate_runtime_configuration(settings)
    return settings
