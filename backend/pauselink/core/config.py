from decimal import Decimal
from functools import lru_cache
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import AnyUrl, Field, field_validator
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
    query_params.setdefault("target_session_attrs", "read-write")
    new_query = urlencode(query_params, doseq=True)

    return urlunparse(parsed._replace(scheme=scheme, query=new_query))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode and SQL echo")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    database_url: AnyUrl | str = Field(
        default="sqlite:///../data/pauselink.db",
        description="SQLAlchemy compatible database URL",
    )
    production_database_url: AnyUrl | str | None = Field(
        default=None,
        description="Postgres connection string required when ENVIRONMENT=production",
    )
    log_level: str = Field(default="INFO", description="Minimum level emitted by the log sink")
    idempotency_ttl_hours: int = Field(
        default=24,
        description="Hours a cached idempotent response stays replayable",
        gt=0,
    )
    idempotency_lease_seconds: int = Field(
        default=300,
        description="Seconds an unanswered reservation blocks retries before it can be taken over",
        gt=0,
    )
    signature_tolerance_seconds: int = Field(
        default=300,
        description="Maximum clock skew accepted on signed webhook timestamps",
        gt=0,
    )
    default_conversion_fee: Decimal = Field(
        default=Decimal("5.00"),
        description="Conversion fee charged when a campaign does not define one",
        gt=0,
    )
    default_publisher_share_ratio: Decimal = Field(
        default=Decimal("0.6"),
        description="Fraction of the fee paid to the publisher when a campaign does not define a share",
        ge=0,
        le=1,
    )
    default_currency: str = Field(default="USD", description="Currency of newly created wallets")
    receipt_page_size_limit: int = Field(
        default=200,
        description="Upper bound for the limit parameter of receipt listings",
        ge=1,
    )

    @field_validator("database_url", "production_database_url", mode="before")
    @classmethod
    def _normalize_postgres_urls(cls, value: Any) -> Any:
        if value is None or not isinstance(value, str):
            return value
        if value.startswith("postgres://"):
            return "postgresql://" + value[len("postgres://") :]
        return value

    @field_validator("default_currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        candidate = value.strip().upper()
        if len(candidate) != 3 or not candidate.isalpha():
            raise ValueError("DEFAULT_CURRENCY must be a three letter ISO currency code")
        return candidate

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"

    @property
    def resolved_database_url(self) -> str:
        environment = self.environment.lower()
        if environment == "production":
            if not self.production_database_url:
                raise ValueError(
                    "PRODUCTION_DATABASE_URL must be set when ENVIRONMENT=production"
                )
            return _ensure_sqlalchemy_postgres_scheme(str(self.production_database_url))
        return _ensure_sqlalchemy_postgres_scheme(str(self.database_url))


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
