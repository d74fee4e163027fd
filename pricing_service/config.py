"""Configuration settings for Bundle Pricing Service."""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "bundle-pricing-service"
    app_version: str = "1.0.0"
    app_host: str = "0.0.0.0"
    app_port: int = 8010
    log_level: str = "INFO"

    # Pricing metadata
    pricing_schema_version: str = "1.0"
    correlation_id_prefix: str = "pricing"

    # Calculation limits
    calculation_timeout: float = 2.0  # seconds, per calculation
    bulk_max_requests: int = 500

    # Engine behaviour
    last_wins_policy: str = "lowest_priority"  # or "highest_priority"
    enable_rule_validation: bool = True

    # Monitoring
    enable_metrics: bool = True


settings = Settings()
