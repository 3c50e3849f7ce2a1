"""DynamoDB Record Store adapter."""

import asyncio
import logging
from datetime import datetime
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from src.adapters.driven.store.serialization import from_item, serialize, to_item
from src.ports.errors import NotFoundError, StoreError, describe
from src.ports.records import (
    RecordStorePort,
    Response,
    ScheduledRequest,
    format_timestamp,
)

__all__ = ["DynamoRecordStore", "make_dynamodb_client"]

logger = logging.getLogger(__name__)

CONDITION_FAILED = "ConditionalCheckFailedException"
DUE_FILTER = "#ea <= :now AND #lk = :unlocked"
MAX_ATTEMPTS = 5


def make_dynamodb_client(region: str | None = None) -> Any:
    """Create a DynamoDB client with standard-mode retries."""
    return boto3.client(
        "dynamodb",
        region_name=region,
        config=Config(retries={"max_attempts": MAX_ATTEMPTS, "mode": "standard"}),
    )


class _ConditionFailed(StoreError):
    """Condition expression of a write did not hold."""


def _describe_client_error(exc: ClientError) -> str:
    error = exc.response.get("Error", {})
    return f"{error.get('Code', 'Unknown')}: {error.get('Message', '')}".rstrip(": ")


class DynamoRecordStore(RecordStorePort):
    """Record Store backed by one DynamoDB table keyed by ID.

    boto3 is blocking, so every call runs in a worker thread; one client
    is shared by all tasks (boto3 clients are thread-safe).
    """

    def __init__(self, table_name: str, client: Any | None = None, region: str | None = None) -> None:
        """Initialize the store.

        Args:
            table_name: DynamoDB table name.
            client: Pre-built boto3 DynamoDB client; created when omitted.
            region: Region used when creating the client.
        """
        if not table_name:
            raise ValueError("table_name must not be empty")
        self.table_name = table_name
        self.client = client if client is not None else make_dynamodb_client(region)

    async def _call(self, operation: str, record_id: str | None, api: str, **kwargs: Any) -> dict[str, Any]:
        """Invoke one DynamoDB API call, mapping failures to StoreError."""
        fn = getattr(self.client, api)
        try:
            return await asyncio.to_thread(fn, TableName=self.table_name, **kwargs)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == CONDITION_FAILED:
                raise _ConditionFailed(operation, record_id, "condition failed") from e
            raise StoreError(
                operation, record_id, f"table_name={self.table_name} {_describe_client_error(e)}"
            ) from e
        except BotoCoreError as e:
            raise StoreError(operation, record_id, f"table_name={self.table_name} {e}") from e

    @staticmethod
    def _key(record_id: str) -> dict[str, Any]:
        return {"ID": serialize(record_id)}

    async def query_due(self, now: datetime) -> list[ScheduledRequest]:
        current = format_timestamp(now)
        logger.info(f"Fetching due scheduled requests table_name={self.table_name} current={current}")
        kwargs: dict[str, Any] = {
            "FilterExpression": DUE_FILTER,
            "ExpressionAttributeNames": {"#ea": "EffectiveAfter", "#lk": "Locking"},
            "ExpressionAttributeValues": {
                ":now": serialize(current),
                ":unlocked": serialize(False),
            },
        }
        items: list[dict[str, Any]] = []
        while True:
            page = await self._call("query_due", None, "scan", **kwargs)
            items.extend(page.get("Items", []))
            last_key = page.get("LastEvaluatedKey")
            if not last_key:
                break
            kwargs["ExclusiveStartKey"] = last_key

        try:
            records = [from_item(item) for item in items]
        except (KeyError, ValueError, TypeError) as e:
            raise StoreError("query_due", None, f"malformed item: {describe(e)}") from e
        logger.info(f"Found {len(records)} due scheduled requests")
        return records

    async def get(self, record_id: str) -> ScheduledRequest:
        logger.info(f"Getting scheduled request table_name={self.table_name} id={record_id}")
        resp = await self._call("get", record_id, "get_item", Key=self._key(record_id), ConsistentRead=True)
        item = resp.get("Item")
        if not item:
            raise NotFoundError("get", record_id)
        try:
            return from_item(item)
        except (KeyError, ValueError, TypeError) as e:
            raise StoreError("get", record_id, f"malformed item: {describe(e)}") from e

    async def create(self, record: ScheduledRequest) -> None:
        logger.info(f"Storing scheduled request table_name={self.table_name} {record}")
        try:
            await self._call(
                "create",
                record.id,
                "put_item",
                Item=to_item(record),
                ConditionExpression="attribute_not_exists(ID)",
            )
        except _ConditionFailed as e:
            raise StoreError("create", record.id, "duplicate id") from e

    async def _update(self, operation: str, record_id: str, expression: str, values: dict[str, Any]) -> None:
        """Partial update of an existing record; never upserts."""
        try:
            await self._call(
                operation,
                record_id,
                "update_item",
                Key=self._key(record_id),
                UpdateExpression=expression,
                ConditionExpression="attribute_exists(ID)",
                ExpressionAttributeValues={k: serialize(v) for k, v in values.items()},
            )
        except _ConditionFailed as e:
            raise NotFoundError(operation, record_id) from e

    async def set_locking(self, record_id: str, value: bool) -> None:
        logger.info(f"Setting locking table_name={self.table_name} id={record_id} locking={value}")
        await self._update("set_locking", record_id, "SET Locking = :l", {":l": value})

    async def claim(self, record_id: str) -> bool:
        logger.info(f"Claiming scheduled request table_name={self.table_name} id={record_id}")
        try:
            await self._call(
                "claim",
                record_id,
                "update_item",
                Key=self._key(record_id),
                UpdateExpression="SET Locking = :locked",
                ConditionExpression="attribute_exists(ID) AND Locking = :unlocked",
                ExpressionAttributeValues={
                    ":locked": serialize(True),
                    ":unlocked": serialize(False),
                },
            )
        except _ConditionFailed:
            return False
        return True

    async def record_result(self, record_id: str, response: Response, now: datetime) -> None:
        logger.info(
            f"Storing execution result table_name={self.table_name} id={record_id} code={response.code}"
        )
        await self._update(
            "record_result",
            record_id,
            "SET ExecutionResult = :r, ExecutedAt = :e",
            {":r": response.to_json(), ":e": format_timestamp(now)},
        )

    async def record_failure(self, record_id: str, error: BaseException) -> None:
        logger.info(f"Storing execution failure table_name={self.table_name} id={record_id}")
        await self._update("record_failure", record_id, "SET FailureReason = :f", {":f": describe(error)})

    async def remove(self, record_id: str) -> None:
        logger.info(f"Removing scheduled request table_name={self.table_name} id={record_id}")
        await self._call("remove", record_id, "delete_item", Key=self._key(record_id))

    async def ping(self) -> None:
        await self._call("ping", None, "describe_table")
