"""Mapping between ScheduledRequest and the persisted record layout."""

from __future__ import annotations

from typing import Any

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

from src.ports.records import ScheduledRequest, format_timestamp, parse_timestamp

__all__ = ["to_document", "from_document", "to_item", "from_item", "serialize"]

_SER = TypeSerializer()
_DESER = TypeDeserializer()


def serialize(value: Any) -> dict[str, Any]:
    """Serialize one Python value as a DynamoDB attribute value."""
    return _SER.serialize(value)


def to_document(record: ScheduledRequest) -> dict[str, Any]:
    """Plain attribute dict of a record, timestamps as text.

    Optional attributes that are unset are left out.
    """
    doc: dict[str, Any] = {
        "ID": record.id,
        "CreatedAt": format_timestamp(record.created_at),
        "EffectiveAfter": format_timestamp(record.effective_after),
        "Locking": record.locking,
        "Method": record.method,
        "URL": record.url,
        "Payload": record.payload,
        "Headers": dict(record.headers),
        "PersistentStore": record.persistent_store,
    }
    if record.failure_reason is not None:
        doc["FailureReason"] = record.failure_reason
    if record.execution_result is not None:
        doc["ExecutionResult"] = record.execution_result
    if record.executed_at is not None:
        doc["ExecutedAt"] = format_timestamp(record.executed_at)
    return doc


def from_document(doc: dict[str, Any]) -> ScheduledRequest:
    """Build a record from a plain attribute dict.

    Raises:
        KeyError: A required attribute is missing.
        ValueError: A timestamp is malformed.
    """
    executed_at = doc.get("ExecutedAt")
    return ScheduledRequest(
        id=str(doc["ID"]),
        created_at=parse_timestamp(doc["CreatedAt"]),
        effective_after=parse_timestamp(doc["EffectiveAfter"]),
        method=str(doc["Method"]),
        url=str(doc["URL"]),
        payload=str(doc.get("Payload") or ""),
        headers={str(k): str(v) for k, v in (doc.get("Headers") or {}).items()},
        locking=bool(doc.get("Locking", False)),
        persistent_store=bool(doc.get("PersistentStore", False)),
        failure_reason=doc.get("FailureReason") or None,
        execution_result=doc.get("ExecutionResult") or None,
        executed_at=parse_timestamp(executed_at) if executed_at else None,
    )


def to_item(record: ScheduledRequest) -> dict[str, Any]:
    """DynamoDB item of a record."""
    return {k: serialize(v) for k, v in to_document(record).items()}


def from_item(item: dict[str, Any]) -> ScheduledRequest:
    """Record of a DynamoDB item."""
    return from_document({k: _DESER.deserialize(v) for k, v in item.items()})
