from pydantic import ConfigDict, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Database
    database_url: str = "sqlite:///./marketplace.db"
    persistence_timeout_seconds: float = 10.0

    # Identity tokens (HMAC secret is required at startup)
    token_secret: str | None = None
    identity_token_ttl_seconds: int = 24 * 60 * 60

    # Download grants
    download_token_ttl_days: int = 7
    download_token_max_uses: int = 5

    # Agent keys
    agent_key_prefix: str = "clf_sk_live_"
    argon2_time_cost: int = 3
    argon2_memory_cost: int = 65536  # 64MB
    argon2_parallelism: int = 4

    # Internal endpoints (admin tooling, email sender)
    internal_api_key: str | None = None

    # Redirect targets for the email confirmation flow
    app_base_url: str = "http://localhost:3000"

    # Rate Limiting
    rate_limit_verify: str = "20/minute"
    rate_limit_downloads: str = "30/minute"
    rate_limit_agent: str = "60/minute"
    rate_limit_internal: str = "30/minute"

    # Object storage for skill archives
    object_storage_enabled: bool = False
    object_storage_endpoint: str | None = None
    object_storage_bucket: str | None = None
    object_storage_access_key: str | None = None
    object_storage_secret_key: str | None = None
    object_storage_region: str = "us-east-1"
    artifact_fetch_timeout_seconds: float = 30.0

    # Operator alerts
    alerts_webhook_url: str | None = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"

    # CORS
    cors_origins: list[str] | str = ["http://localhost:3000", "http://127.0.0.1:3000"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("download_token_max_uses", "download_token_ttl_days")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v


settings = Settings()
