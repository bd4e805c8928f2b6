from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DispatchSettings(BaseSettings):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["text", "json"] = "text"
    db_path: str = Field(default="./db/dispatch.db")

    # Matching
    staleness_window_seconds: int = Field(
        default=120,
        ge=10,
        le=3600,
        description="Drivers without a location report inside this window are not dispatched to",
    )
    distance_metric: Literal["haversine", "planar"] = Field(
        default="haversine",
        description="haversine: great-circle km; planar: Euclidean distance in degree space",
    )

    # Offer lifecycle
    offer_timeout_seconds: int = Field(
        default=30,
        ge=5,
        le=600,
        description="Seconds before an unanswered offer is auto-rejected and reassigned",
    )
    search_timeout_seconds: int = Field(
        default=300,
        ge=30,
        le=3600,
        description="Seconds a trip may stay searching for a driver before it is cancelled",
    )
    sweep_interval_seconds: float = Field(default=5.0, ge=0.5, le=60.0)

    # Notifications
    notification_retention_hours: int = Field(
        default=24,
        ge=1,
        le=24 * 30,
        description="Notifications older than this are deleted by the retention sweep",
    )

    model_config = SettingsConfigDict(env_prefix="DISPATCH_")


class FareSettings(BaseSettings):
    """Fare policy constants (amounts in the settlement currency)."""

    currency: str = "RWF"
    per_km_rate: float = Field(default=500.0, gt=0)
    base_fare: float = Field(default=500.0, ge=0)
    cancel_rate_per_km: float = Field(default=300.0, ge=0)
    pickup_loss_fraction: float = Field(
        default=0.15,
        ge=0.0,
        le=1.0,
        description="Share of the quoted amount paid to the driver when a trip is cancelled",
    )

    model_config = SettingsConfigDict(env_prefix="FARE_")


class RedisSettings(BaseSettings):
    host: str = "localhost"
    port: int = 6379
    password: str = ""
    ssl: bool = False

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    @model_validator(mode="after")
    def validate_credentials_provided(self) -> "RedisSettings":
        if not self.password:
            raise ValueError("Required credential not provided: REDIS_PASSWORD")
        return self


class PaymentSettings(BaseSettings):
    """MTN MoMo collection API configuration."""

    base_url: str = "https://sandbox.momodeveloper.mtn.com"
    user_id: str = ""
    api_key: str = ""
    subscription_key: str = ""
    target_environment: str = "sandbox"
    currency: str = "EUR"
    timeout_seconds: float = Field(default=10.0, gt=0)
    status_poll_delay_seconds: float = Field(
        default=4.0,
        ge=0.0,
        le=60.0,
        description="Wait between the request-to-pay call and the status check",
    )
    max_retries: int = Field(default=3, ge=1, le=10)

    model_config = SettingsConfigDict(env_prefix="MOMO_")

    @field_validator("base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("MoMo base URL must start with http:// or https://")
        return v.rstrip("/")


class APISettings(BaseSettings):
    key: str = ""

    model_config = SettingsConfigDict(env_prefix="API_")

    @model_validator(mode="after")
    def validate_credentials_provided(self) -> "APISettings":
        if not self.key:
            raise ValueError("Required credential not provided: API_KEY")
        return self


class CORSSettings(BaseSettings):
    origins: str = "http://localhost:8081,http://localhost:19006"

    model_config = SettingsConfigDict(env_prefix="CORS_")


class Settings(BaseSettings):
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    fare: FareSettings = Field(default_factory=FareSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    payment: PaymentSettings = Field(default_factory=PaymentSettings)
    api: APISettings = Field(default_factory=APISettings)
    cors: CORSSettings = Field(default_factory=CORSSettings)

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        case_sensitive=False,
    )


def get_settings() -> Settings:
    """Load and validate settings from environment variables."""
    return Settings()
