"""Settings port definition (DTO)."""

from dataclasses import dataclass

__all__ = ["SettingsPort"]


@dataclass
class SettingsPort:
    """Runtime settings handed to the core and the adapters at construction.

    Attributes:
        table_name: Record Store table.
        base_url: Base for relative request URLs; empty disables rewriting.
        api_token: Bearer token sent with every request; empty for none.
        user_agent: Outbound User-Agent; empty keeps the client default.
        aws_region: DynamoDB region; None uses the boto3 default chain.
        max_concurrency: Records executed concurrently within one pass.
        poll_period_in_sec: Seconds between pass starts in polling mode.
        http_timeout_in_sec: Total timeout of one HTTP call.
        http_connect_attempts: Connection attempts per HTTP call.
    """

    table_name: str
    base_url: str = ""
    api_token: str = ""
    user_agent: str = ""
    aws_region: str | None = None
    max_concurrency: int = 16
    poll_period_in_sec: float = 300
    http_timeout_in_sec: float = 30
    http_connect_attempts: int = 3
