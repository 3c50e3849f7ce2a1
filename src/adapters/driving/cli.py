"""Administrative command line over the scheduled requests table.

Commands:
- create: add a new scheduled request.
- get: print one scheduled request.
- list: print the requests due now.
- lock / unlock: set or clear the locking flag (unlock re-arms a failed request).

AWS credentials and region come from the usual boto3 environment.
"""

import argparse
import asyncio
import json
import logging
import os
import uuid
from collections.abc import Sequence
from datetime import timedelta

from pydantic import BaseModel, Field, ValidationError, field_validator

from src.adapters.driven.logging.logging_config import configure_logs
from src.adapters.driven.store.dynamodb import DynamoRecordStore
from src.adapters.driven.store.serialization import to_document
from src.ports.errors import NotFoundError, SchedulerError
from src.ports.records import RecordStorePort, ScheduledRequest, utc_now

__all__ = ["NewRequest", "parse_headers", "build_parser", "run_command", "main"]

logger = logging.getLogger(__name__)

ALLOWED_METHODS = ("GET", "POST", "PUT", "DELETE")
DEFAULT_FREEZE_SEC = 3600


def parse_headers(raw: str) -> dict[str, str]:
    """Parse "key:value,key2:value2" into a header dict.

    Raises:
        ValueError: A pair has no colon or an empty key.
    """
    headers: dict[str, str] = {}
    if not raw:
        return headers
    for pair in raw.split(","):
        key, sep, value = pair.partition(":")
        if not sep or not key.strip():
            raise ValueError(f"Invalid header {pair!r}, expected key:value")
        headers[key.strip()] = value.strip()
    return headers


class NewRequest(BaseModel):
    """Validated input of the create command."""

    id: str = Field(..., min_length=1)
    method: str = "GET"
    url: str = Field(..., min_length=1)
    payload: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    freeze_sec: int = Field(default=DEFAULT_FREEZE_SEC, ge=0)
    persistent: bool = False

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        method = v.upper()
        if method not in ALLOWED_METHODS:
            raise ValueError(f"method must be one of {', '.join(ALLOWED_METHODS)}")
        return method

    def to_record(self) -> ScheduledRequest:
        """Build the record; effective_after is never before created_at."""
        created_at = utc_now()
        return ScheduledRequest(
            id=self.id,
            created_at=created_at,
            effective_after=created_at + timedelta(seconds=self.freeze_sec),
            method=self.method,
            url=self.url,
            payload=self.payload,
            headers=dict(self.headers),
            persistent_store=self.persistent,
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scheduled-requests",
        description="Administer scheduled HTTP requests.",
    )
    parser.add_argument(
        "--table",
        default=os.getenv("TABLE_NAME", ""),
        help="DynamoDB table storing the requests (default: $TABLE_NAME)",
    )
    parser.add_argument("--region", default=os.getenv("AWS_REGION"), help="AWS region")
    commands = parser.add_subparsers(dest="command", required=True)

    create = commands.add_parser("create", help="add a new scheduled request")
    create.add_argument("--id", default=None, help="request unique id (default: random)")
    create.add_argument("--method", default="GET", help="request method name")
    create.add_argument(
        "--url",
        required=True,
        help="absolute url, or relative when BASE_URL is set for the dispatcher",
    )
    create.add_argument("--payload", default="", help="payload data")
    create.add_argument("--headers", default="", help="comma separated key:value headers")
    create.add_argument(
        "--freeze",
        type=int,
        default=DEFAULT_FREEZE_SEC,
        help="seconds from now until the request becomes effective",
    )
    create.add_argument(
        "--persistent",
        action="store_true",
        help="keep the request and its result after execution",
    )

    commands.add_parser("list", help="print the requests due now")
    for name, text in (
        ("get", "print one request"),
        ("lock", "lock a request so it is not executed"),
        ("unlock", "unlock a request so the next pass executes it"),
    ):
        sub = commands.add_parser(name, help=text)
        sub.add_argument("--id", required=True, help="request unique id")

    return parser


async def run_command(args: argparse.Namespace, store: RecordStorePort) -> int:
    """Execute one parsed command against a store.

    Returns:
        Process exit code.
    """
    if args.command == "create":
        try:
            new = NewRequest(
                id=args.id or str(uuid.uuid4()),
                method=args.method,
                url=args.url,
                payload=args.payload,
                headers=parse_headers(args.headers),
                freeze_sec=args.freeze,
                persistent=args.persistent,
            )
        except (ValidationError, ValueError) as e:
            print(f"Invalid request: {e}")
            return 2
        record = new.to_record()
        await store.create(record)
        print(json.dumps(to_document(record)))
    elif args.command == "list":
        records = await store.query_due(utc_now())
        print(json.dumps([to_document(r) for r in records]))
    elif args.command == "get":
        try:
            record = await store.get(args.id)
        except NotFoundError:
            print("not found")
            return 1
        print(json.dumps(to_document(record)))
    elif args.command in ("lock", "unlock"):
        await store.set_locking(args.id, args.command == "lock")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    configure_logs()
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.table:
        parser.error("--table (or TABLE_NAME) is required")

    store = DynamoRecordStore(args.table, region=args.region)
    try:
        return asyncio.run(run_command(args, store))
    except SchedulerError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
