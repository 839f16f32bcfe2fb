from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PREFIX = "MEDIA_COMPANION_"
DEFAULT_DATA_DIR = Path(".media-companion")
# Paths that live under `data_dir` unless set explicitly.
_DATA_DIR_CHILDREN: dict[str, Path] = {
    "db_path": Path("media.db"),
    "log_dir": Path("logs"),
}
_PATH_FIELDS = ("data_dir", *_DATA_DIR_CHILDREN)
_FLAG_FIELDS = ("seed_sample_data", "enrichment_enabled", "telemetry_enabled")
_CHOICE_FIELDS: dict[str, tuple[str, ...]] = {
    "storage_backend": ("sqlite", "memory"),
    "telemetry_sink": ("none", "log"),
}
_URL_FIELDS = ("omdb_base_url", "tmdb_base_url", "google_books_base_url")
_SECRET_FIELDS = ("api_key", "omdb_api_key", "tmdb_api_key", "google_books_api_key")
_FLAG_WORDS: dict[str, bool] = {
    "1": True,
    "true": True,
    "yes": True,
    "on": True,
    "0": False,
    "false": False,
    "no": False,
    "off": False,
}


def _under_data_dir(field_name: str) -> Path:
    return DEFAULT_DATA_DIR / _DATA_DIR_CHILDREN[field_name]


def _under_data_dir_note(field_name: str) -> str:
    child = _DATA_DIR_CHILDREN[field_name]
    return f"Defaults to `${{{ENV_PREFIX}DATA_DIR}}/{child}` when not explicitly set."


def _absolute(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _coerce_flag(value: Any, *, default: bool) -> bool:
    """Read loose env-style booleans; anything unrecognised keeps the default."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return {1: True, 0: False}.get(value, default)
    if isinstance(value, str):
        return _FLAG_WORDS.get(value.strip().lower(), default)
    return default


def _blank_to_none(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip() or None


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    Every option is read from `MEDIA_COMPANION_*` environment variables (or `.env`).
    A few options also accept the bare names older deployments used
    (`API_KEY`, `PORT`, `DATABASE_TYPE`, `OMDB_API_KEY`, `TMDB_API_KEY`).
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # Core paths and storage.
    data_dir: Path = Field(
        default=DEFAULT_DATA_DIR,
        description="Root runtime directory for the media database and logs.",
    )
    db_path: Path = Field(
        default=_under_data_dir("db_path"),
        description=f"SQLite database path. {_under_data_dir_note('db_path')}",
    )
    storage_backend: Literal["sqlite", "memory"] = Field(
        default="sqlite",
        validation_alias=AliasChoices("MEDIA_COMPANION_STORAGE_BACKEND", "DATABASE_TYPE"),
        description=(
            "Persistence backend. `memory` keeps items for the process lifetime only "
            "and is meant for demos and tests."
        ),
    )
    seed_sample_data: bool = Field(
        default=False,
        description="Seed the in-memory backend with a few sample movies on startup.",
    )

    # HTTP transport.
    api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("MEDIA_COMPANION_API_KEY", "API_KEY"),
        description="Static bearer credential required by every HTTP tool endpoint.",
    )
    host: str = Field(
        default="0.0.0.0",
        description="Interface the HTTP transport binds to.",
    )
    port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        validation_alias=AliasChoices("MEDIA_COMPANION_PORT", "PORT"),
        description="Port the HTTP transport listens on.",
    )

    # Metadata enrichment.
    enrichment_enabled: bool = Field(
        default=True,
        description="Look up external metadata (OMDb, Google Books, TMDB) when adding items.",
    )
    enrichment_http_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for each outbound metadata request.",
    )
    omdb_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("MEDIA_COMPANION_OMDB_API_KEY", "OMDB_API_KEY"),
        description="OMDb API key used for movie enrichment. Movies are not enriched without it.",
    )
    omdb_base_url: str = Field(
        default="http://www.omdbapi.com",
        description="OMDb API base URL.",
    )
    tmdb_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("MEDIA_COMPANION_TMDB_API_KEY", "TMDB_API_KEY"),
        description="TMDB API key used for TV show enrichment.",
    )
    tmdb_base_url: str = Field(
        default="https://api.themoviedb.org/3",
        description="TMDB API base URL.",
    )
    google_books_api_key: str | None = Field(
        default=None,
        description="Optional Google Books API key. Book lookups work anonymously without it.",
    )
    google_books_base_url: str = Field(
        default="https://www.googleapis.com/books/v1",
        description="Google Books API base URL.",
    )

    # Logging.
    log_dir: Path = Field(
        default=_under_data_dir("log_dir"),
        description=f"Directory for log files. {_under_data_dir_note('log_dir')}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout for HTTP, stderr for stdio).",
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

    @field_validator(*_CHOICE_FIELDS, mode="before")
    @classmethod
    def _normalize_choice(cls, value: Any, info: ValidationInfo) -> str:
        field_name = str(info.field_name)
        choices = _CHOICE_FIELDS[field_name]
        normalized = value.strip().lower() if isinstance(value, str) else ""
        if normalized not in choices:
            raise ValueError(
                f"{ENV_PREFIX}{field_name.upper()} must be set to: {', '.join(choices)}."
            )
        return normalized

    @field_validator(*_URL_FIELDS, mode="before")
    @classmethod
    def _normalize_base_url(cls, value: Any, info: ValidationInfo) -> str:
        normalized = value.strip().rstrip("/") if isinstance(value, str) else ""
        if not normalized:
            raise ValueError(f"{ENV_PREFIX}{str(info.field_name).upper()} must be a non-empty URL.")
        return normalized

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_path(cls, value: Any) -> Any:
        return None if value is None else _absolute(value)

    @field_validator(*_FLAG_FIELDS, mode="before")
    @classmethod
    def _normalize_flag(cls, value: Any, info: ValidationInfo) -> bool:
        default = cls.model_fields[str(info.field_name)].default
        return _coerce_flag(value, default=bool(default))

    @field_validator(*_SECRET_FIELDS, mode="before")
    @classmethod
    def _normalize_secret(cls, value: Any) -> str | None:
        return _blank_to_none(value)


def validate_http_configuration(*, api_key: str | None) -> None:
    """Raise `ValueError` with a bulleted report when HTTP cannot be served safely."""
    problems: list[str] = []
    if api_key is None:
        problems.append(f"{ENV_PREFIX}API_KEY (or API_KEY) is required to serve tools over HTTP.")
    if problems:
        report = "\n".join(f"- {problem}" for problem in problems)
        raise ValueError(f"Invalid configuration for the HTTP transport:\n{report}")


def _finalize_paths(settings: AppSettings) -> AppSettings:
    # Unset children follow a customised data_dir; every path ends up absolute.
    updates: dict[str, Path] = {}
    for field_name, child in _DATA_DIR_CHILDREN.items():
        explicit = field_name in settings.model_fields_set
        updates[field_name] = _absolute(
            getattr(settings, field_name) if explicit else settings.data_dir / child
        )
    updates["data_dir"] = _absolute(settings.data_dir)
    return settings.model_copy(update=updates)


def load_settings(*, require_api_key: bool = False) -> AppSettings:
    settings = _finalize_paths(AppSettings())
    if require_api_key:
        validate_http_configuration(api_key=settings.api_key)
    return settings
