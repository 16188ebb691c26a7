from decimal import Decimal
from functools import lru_cache
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import AnyUrl, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _ensure_sqlalchemy_postgres_scheme(value: str) -> str:
    if not value.lower().startswith("postgres"):
        return value

    parsed = urlparse(value)
    scheme = parsed.scheme.lower()

    if scheme == "postgres":
        scheme = "postgresql"

    if scheme == "postgresql":
        scheme = "postgresql+psycopg"

    if scheme not in {"postgresql+psycopg", "postgresql+asyncpg"}:
        scheme = "postgresql+psycopg"

    query_params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query_params.setdefault("sslmode", "require")
    query_params.setdefault("target_session_attrs", "read-write")
    new_query = urlencode(query_params, doseq=True)

    return urlunparse(parsed._replace(scheme=scheme, query=new_query))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    database_url: AnyUrl | str = Field(
        default="sqlite:///../data/betchat.db",
        description="SQLAlchemy compatible database URL",
    )
    supabase_db_url: AnyUrl | str | None = Field(
        default=None,
        description="Supabase pooled Postgres connection string for production runs",
    )
    currency_symbol: str = Field(
        default="₦",
        description="Currency symbol used in user-facing messages",
    )
    min_stake: Decimal = Field(
        default=Decimal("100"),
        description="Smallest stake accepted for an event or challenge, in major units",
        gt=0,
    )
    min_event_duration_minutes: int = Field(
        default=15,
        description="Events must end strictly later than start + this many minutes",
        ge=0,
    )
    default_max_participants: int = Field(
        default=100,
        description="Participant cap applied when an event is created without one",
        ge=2,
    )
    max_participants_limit: int = Field(
        default=1000,
        description="Largest participant cap accepted at event creation",
        ge=2,
    )
    odds_default: Decimal = Field(
        default=Decimal("2.0"),
        description="Multiplier quoted on an empty pool",
        gt=0,
    )
    odds_floor: Decimal = Field(default=Decimal("1.1"), description="Lowest quoted multiplier", gt=0)
    odds_ceiling: Decimal = Field(default=Decimal("10.0"), description="Highest quoted multiplier", gt=0)
    match_tolerance: Decimal = Field(
        default=Decimal("0.2"),
        description="Relative stake difference accepted when pairing a stake with an opposing one",
        ge=0,
        lt=1,
    )
    ledger_backend: str = Field(
        default="sql",
        description="Ledger implementation: 'sql' keeps balances in this database, 'http' calls a ledger service",
    )
    ledger_base_url: AnyUrl | str | None = Field(
        default=None,
        description="Base URL of the remote ledger service (ledger_backend=http)",
    )
    ledger_api_key: str | None = Field(
        default=None,
        description="Bearer token presented to the remote ledger service",
    )
    ledger_timeout_seconds: float = Field(
        default=10.0,
        description="Request timeout for the remote ledger service",
        gt=0,
    )
    payout_retry_attempts: int = Field(
        default=3,
        description="Number of attempts for each participant payout or refund before deferring to the sweep",
        ge=1,
    )
    payout_retry_backoff_seconds: list[float] | tuple[float, ...] | str = Field(
        default_factory=lambda: [0.5, 1.0, 2.0],
        description="Comma-separated list or array of backoff delays (seconds) between payout attempts",
    )
    sweep_batch_size: int = Field(
        default=50,
        description="Number of events handled per batch by the lifecycle sweep",
        ge=1,
    )

    @field_validator("database_url", "supabase_db_url", mode="before")
    @classmethod
    def _normalize_postgres_urls(cls, value: Any) -> Any:
        if value is None or not isinstance(value, str):
            return value

        if value.startswith("postgresql+psycopg://") or value.startswith(
            "postgresql+asyncpg://"
        ):
            return value

        if value.startswith("postgres://"):
            return "postgresql://" + value[len("postgres://") :]
        return value

    @field_validator("supabase_db_url")
    @classmethod
    def _require_postgres_scheme(cls, value: Any) -> Any:
        if value is None:
            return value
        scheme = str(value).split(":", 1)[0].lower()
        valid_schemes = {
            "postgres",
            "postgresql",
            "postgresql+psycopg",
            "postgresql+asyncpg",
        }
        if scheme not in valid_schemes:
            raise ValueError(
                "SUPABASE_DB_URL must be a PostgreSQL connection string (e.g. postgresql://...)."
            )
        return value

    @field_validator("ledger_backend")
    @classmethod
    def _validate_ledger_backend(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"sql", "http"}:
            raise ValueError("LEDGER_BACKEND must be either 'sql' or 'http'")
        return normalized

    @field_validator("payout_retry_backoff_seconds", mode="before")
    @classmethod
    def _parse_retry_backoff(cls, value: Any) -> list[float]:
        if value in (None, "", []):
            return [0.5, 1.0, 2.0]
        if isinstance(value, str):
            tokens = [token.strip() for token in value.split(",") if token.strip()]
            if not tokens:
                raise ValueError("PAYOUT_RETRY_BACKOFF_SECONDS must contain at least one value")
            value = tokens
        if isinstance(value, (list, tuple)):
            backoff: list[float] = []
            for item in value:
                try:
                    delay = float(item)
                except (TypeError, ValueError) as exc:
                    raise ValueError("PAYOUT_RETRY_BACKOFF_SECONDS entries must be numeric") from exc
                if delay < 0:
                    raise ValueError("PAYOUT_RETRY_BACKOFF_SECONDS entries must not be negative")
                backoff.append(delay)
            if not backoff:
                raise ValueError("PAYOUT_RETRY_BACKOFF_SECONDS must contain at least one value")
            return backoff
        raise ValueError(
            "PAYOUT_RETRY_BACKOFF_SECONDS must be provided as a comma-separated string or list of numbers"
        )

    @model_validator(mode="after")
    def _check_ranges(self) -> "Settings":
        if self.odds_floor > self.odds_ceiling:
            raise ValueError("ODDS_FLOOR must not exceed ODDS_CEILING")
        if self.default_max_participants > self.max_participants_limit:
            raise ValueError("DEFAULT_MAX_PARTICIPANTS must not exceed MAX_PARTICIPANTS_LIMIT")
        if self.ledger_backend == "http" and not self.ledger_base_url:
            raise ValueError("LEDGER_BASE_URL must be set when LEDGER_BACKEND=http")
        return self

    @property
    def resolved_database_url(self) -> str:
        environment = self.environment.lower()
        if environment == "production":
            if not self.supabase_db_url:
                raise ValueError(
                    "SUPABASE_DB_URL must be set when ENVIRONMENT=production"
                )
            return _ensure_sqlalchemy_postgres_scheme(str(self.supabase_db_url))
        return _ensure_sqlalchemy_postgres_scheme(str(self.database_url))

    @property
    def payout_retry_backoff_schedule(self) -> tuple[float, ...]:
        sequence = tuple(float(value) for value in self.payout_retry_backoff_seconds)
        if not sequence:
            return (0.5,)
        return sequence


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
