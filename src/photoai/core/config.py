"""Application configuration using Pydantic BaseSettings."""

import structlog
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from photoai.services.webhook_signature import signing_key


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application Database Configuration
    database_url: str = Field(alias="DATABASE_URL")
    db_pool_size: int = Field(default=50, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # Credit pricing
    image_gen_cost: int = Field(default=1, ge=1, alias="IMAGE_GEN_COST")
    train_model_credits: int = Field(default=20, ge=1, alias="TRAIN_MODEL_CREDITS")
    refund_failed_generations: bool = Field(default=False, alias="REFUND_FAILED_GENERATIONS")

    # Replicate executor
    replicate_api_token: str = Field(default="", alias="REPLICATE_API_TOKEN")
    replicate_training_model: str = Field(
        default="ostris/flux-dev-lora-trainer", alias="REPLICATE_TRAINING_MODEL"
    )
    replicate_training_version: str = Field(default="", alias="REPLICATE_TRAINING_VERSION")
    replicate_training_destination: str = Field(
        default="", alias="REPLICATE_TRAINING_DESTINATION"
    )
    replicate_generation_model: str = Field(
        default="black-forest-labs/flux-dev-lora", alias="REPLICATE_GENERATION_MODEL"
    )
    preview_prompt: str = Field(
        default="Head shot of the person, studio lighting, neutral background",
        alias="PREVIEW_PROMPT",
    )
    executor_timeout_seconds: float = Field(default=30.0, gt=0, alias="EXECUTOR_TIMEOUT_SECONDS")

    # Callback delivery
    webhook_base_url: str = Field(default="http://localhost:8000", alias="WEBHOOK_BASE_URL")
    executor_webhook_secret: str = Field(default="", alias="EXECUTOR_WEBHOOK_SECRET")
    webhook_tolerance_seconds: int = Field(default=300, alias="WEBHOOK_TOLERANCE_SECONDS")

    # Pending sweep worker
    sweep_enabled: bool = Field(default=True, alias="SWEEP_ENABLED")
    sweep_interval_seconds: int = Field(default=60, alias="SWEEP_INTERVAL_SECONDS")
    sweep_min_age_seconds: int = Field(default=600, alias="SWEEP_MIN_AGE_SECONDS")
    sweep_batch_size: int = Field(default=20, alias="SWEEP_BATCH_SIZE")
    # Pending jobs never acknowledged by the executor are failed (and refunded) after this
    dispatch_unconfirmed_seconds: int = Field(default=7200, alias="DISPATCH_UNCONFIRMED_SECONDS")

    # Object storage (S3-compatible)
    s3_bucket_name: str = Field(default="", alias="S3_BUCKET_NAME")
    s3_region: str = Field(default="ap-south-1", alias="S3_REGION")
    s3_endpoint_url: str | None = Field(default=None, alias="S3_ENDPOINT_URL")
    aws_access_key_id: str = Field(default="", alias="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: str = Field(default="", alias="AWS_SECRET_ACCESS_KEY")
    presign_expiry_seconds: int = Field(default=3600, alias="PRESIGN_EXPIRY_SECONDS")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def training_webhook_url(self) -> str:
        return f"{self.webhook_base_url.rstrip('/')}/webhooks/executor/train"

    @property
    def generation_webhook_url(self) -> str:
        return f"{self.webhook_base_url.rstrip('/')}/webhooks/executor/image"

    @field_validator("executor_webhook_secret")
    @classmethod
    def validate_webhook_secret(cls, value: str) -> str:
        """Reject a whsec_ secret that cannot be decoded into a signing key."""
        signing_key(value)
        return value

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Fails fast with clear error messages if configuration is incomplete.
        Validation is skipped in test environments to avoid breaking tests.
        """
        if self.app_env in ("test", "testing"):
            return self

        missing = []

        if not self.replicate_api_token:
            missing.append(
                "REPLICATE_API_TOKEN: Get your API token from https://replicate.com/account/api-tokens"
            )

        if not self.replicate_training_destination:
            missing.append(
                "REPLICATE_TRAINING_DESTINATION: Create a destination model (owner/name) on Replicate"
            )

        if not self.executor_webhook_secret:
            missing.append(
                "EXECUTOR_WEBHOOK_SECRET: Copy the webhook signing secret from Replicate"
            )

        if not self.s3_bucket_name:
            missing.append("S3_BUCKET_NAME: Bucket that receives uploaded training photos")

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe application cannot start without these variables."
            error_msg += "\nPlease update your .env file and restart."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    if settings.app_env == "production":
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
    else:
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.dev.ConsoleRenderer(),
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
