"""Application configuration using pydantic-settings.

AWS credentials and region are read from the process environment, the same
variables boto3 understands (AWS_REGION, AWS_ACCESS_KEY_ID, ...).
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # AWS KMS
    # ======================
    aws_region: str = Field(default="us-east-1", description="AWS region of the KMS keys")
    aws_access_key_id: Optional[str] = Field(default=None, description="Static AWS access key")
    aws_secret_access_key: Optional[str] = Field(default=None, description="Static AWS secret key")
    aws_session_token: Optional[str] = Field(default=None, description="AWS session token")
    kms_endpoint_url: Optional[str] = Field(
        default=None, description="Override KMS endpoint (localstack, VPC endpoint)"
    )

    # ======================
    # Custody calls
    # ======================
    custody_timeout_seconds: float = Field(
        default=10.0, description="Default timeout for a single custody call"
    )
    custody_max_concurrency: int = Field(
        default=16, description="Maximum custody calls in flight"
    )
    custody_retry_attempts: int = Field(
        default=3, description="Attempts for transient sign failures (1 = no retry)"
    )
    custody_retry_base_delay: float = Field(default=0.2, description="First backoff delay")
    custody_retry_max_delay: float = Field(default=2.0, description="Backoff delay cap")

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8080, description="API server port")
    cors_origins: str = Field(default="*", description="Comma-separated CORS origins")

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug mode")

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse CORS origins into a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "cors_origins": self.cors_origin_list,
            "kms": {
                "region": self.aws_region,
                "endpoint_url": self.kms_endpoint_url or "(default)",
                "access_key_id": self._redact(self.aws_access_key_id),
                "secret_access_key": "***" if self.aws_secret_access_key else "(not set)",
            },
            "custody": {
                "timeout_seconds": self.custody_timeout_seconds,
                "max_concurrency": self.custody_max_concurrency,
                "retry_attempts": self.custody_retry_attempts,
            },
        }

    @staticmethod
    def _redact(value: Optional[str]) -> str:
        """Keep only the last four characters of an identifier."""
        if not value:
            return "(not set)"
        return "***" + value[-4:]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
