"""Configuration loading from environment variables."""

import logging
import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field, HttpUrl, TypeAdapter, field_validator

from src.ports.settings import SettingsPort

__all__ = ["Settings", "load_settings"]

load_dotenv()

logger = logging.getLogger(__name__)
_http_url_adapter = TypeAdapter(HttpUrl)

# Environment variable -> Settings field, for the optional numeric knobs
_NUMERIC_ENV = {
    "MAX_CONCURRENCY": "max_concurrency",
    "POLL_PERIOD_IN_SECONDS": "poll_period_in_sec",
    "HTTP_TIMEOUT_IN_SECONDS": "http_timeout_in_sec",
    "HTTP_CONNECT_ATTEMPTS": "http_connect_attempts",
}


class Settings(BaseModel):
    """Runtime configuration of the dispatcher.

    Attributes:
        table_name: DynamoDB table holding the scheduled requests.
        base_url: Base for relative request URLs (empty = none).
        api_token: Bearer token sent with every request.
        user_agent: Outbound User-Agent header.
        aws_region: DynamoDB region (None = boto3 default chain).
        max_concurrency: Records executed concurrently within one pass.
        poll_period_in_sec: Interval between passes in polling mode.
        http_timeout_in_sec: Total timeout of one HTTP call.
        http_connect_attempts: Connection attempts per HTTP call.
    """

    table_name: str = Field(..., min_length=1, description="DynamoDB table name.")
    base_url: str = Field(default="", description="Base URL for relative request URLs.")
    api_token: str = Field(default="", description="Bearer token for outbound requests.")
    user_agent: str = Field(default="", description="Outbound User-Agent header.")
    aws_region: str | None = Field(default=None, description="DynamoDB region.")
    max_concurrency: int = Field(default=16, gt=0, description="Concurrent records per pass.")
    poll_period_in_sec: int = Field(default=300, gt=0, description="Seconds between passes.")
    http_timeout_in_sec: float = Field(default=30, gt=0, description="HTTP call timeout.")
    http_connect_attempts: int = Field(default=3, ge=1, description="HTTP connection attempts.")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Validate that the base URL (if provided) is an http(s) URL.

        Args:
            v: Base URL to validate (empty disables rewriting).

        Returns:
            The validated URL.

        Raises:
            ValueError: If URL is invalid or not http(s).
        """
        if not v:
            return v
        try:
            url = _http_url_adapter.validate_python(v)
            if url.scheme not in ("http", "https"):
                raise ValueError("Only http:// and https:// base URLs allowed")
        except Exception as e:
            raise ValueError(f"Invalid base URL: {e}") from e
        return v

    def to_port(self) -> SettingsPort:
        """Wrap into the port so the core depends on the interface."""
        return SettingsPort(
            table_name=self.table_name,
            base_url=self.base_url,
            api_token=self.api_token,
            user_agent=self.user_agent,
            aws_region=self.aws_region,
            max_concurrency=self.max_concurrency,
            poll_period_in_sec=self.poll_period_in_sec,
            http_timeout_in_sec=self.http_timeout_in_sec,
            http_connect_attempts=self.http_connect_attempts,
        )


def load_settings() -> Settings:
    """Load and validate settings from the environment.

    Required environment variables:
    - TABLE_NAME: DynamoDB table storing the scheduled requests.

    Optional:
    - BASE_URL, API_TOKEN, USER_AGENT, AWS_REGION.
    - MAX_CONCURRENCY, POLL_PERIOD_IN_SECONDS, HTTP_TIMEOUT_IN_SECONDS,
      HTTP_CONNECT_ATTEMPTS: positive numbers.

    Returns:
        Validated Settings object.

    Raises:
        RuntimeError: If required env vars missing or numbers malformed.
        ValueError: If configuration is invalid.
    """
    table_name = os.getenv("TABLE_NAME", "")
    if not table_name:
        raise RuntimeError("Missing required environment variable: TABLE_NAME")

    numeric: dict[str, float] = {}
    for env_name, field_name in _NUMERIC_ENV.items():
        raw = os.getenv(env_name)
        if raw is None or raw == "":
            continue
        try:
            value = float(raw)
            if value <= 0:
                raise ValueError("Must be positive")
        except ValueError as e:
            raise RuntimeError(f"{env_name} must be a positive number (got: {raw})") from e
        numeric[field_name] = value

    settings = Settings(
        table_name=table_name,
        base_url=os.getenv("BASE_URL", ""),
        api_token=os.getenv("API_TOKEN", ""),
        user_agent=os.getenv("USER_AGENT", ""),
        aws_region=os.getenv("AWS_REGION") or None,
        **numeric,
    )

    logger.info(
        f"Dispatcher configured: table={settings.table_name}, "
        f"base_url={settings.base_url or '<none>'}, "
        f"token={'<set>' if settings.api_token else '<none>'}, "
        f"max_concurrency={settings.max_concurrency}, "
        f"period={settings.poll_period_in_sec}s"
    )

    return settings
