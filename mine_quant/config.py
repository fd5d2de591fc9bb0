"""
Application configuration using Pydantic settings.
"""
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # External services
    compute_api_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the detection/quantitative compute service"
    )
    history_api_base_url: str = Field(
        default="http://localhost:5000/api",
        description="Base URL of the history service (proxy and stored records)"
    )
    api_token: str = Field(
        default="",
        description="Bearer token sent to both services (omitted when empty)"
    )
    request_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for fetch and persist calls"
    )
    compute_timeout: float = Field(
        default=300.0,
        description="Timeout in seconds for a quantitative compute call"
    )

    # Retry Configuration
    max_retry_attempts: int = Field(
        default=3,
        description="Maximum number of retry attempts for API calls"
    )
    retry_backoff_multiplier: int = Field(
        default=1,
        description="Multiplier for exponential backoff"
    )
    retry_min_wait: int = Field(
        default=1,
        description="Minimum wait time in seconds between retries"
    )
    retry_max_wait: int = Field(
        default=10,
        description="Maximum wait time in seconds between retries"
    )

    # Quantitative pipeline
    auto_compute_on_load: bool = Field(
        default=True,
        description="Start a quantitative compute automatically when no fresh snapshot is stored"
    )
    max_step_details: int = Field(
        default=25,
        description="Maximum detail lines kept per pipeline step"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    # CORS Configuration
    cors_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins (use specific origins in production)"
    )

    # Rate Limiting
    rate_limit_requests: int = Field(
        default=100,
        description="Maximum requests per minute per client"
    )

    # Application Settings
    app_name: str = Field(
        default="Mine Block Quantitative Analysis",
        description="Application name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    debug: bool = Field(
        default=False,
        description="Debug mode"
    )

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
