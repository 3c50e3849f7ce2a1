"""Tests for record DTOs and timestamp helpers."""

from datetime import datetime, timedelta, timezone

import pytest

from src.ports.records import (
    Response,
    ScheduledRequest,
    format_timestamp,
    parse_timestamp,
    utc_now,
)

__all__ = []

NOW = datetime(2018, 9, 5, 12, 0, 0, tzinfo=timezone.utc)


def make_record(effective_after: datetime, locking: bool = False) -> ScheduledRequest:
    return ScheduledRequest(
        id="req-1",
        created_at=NOW - timedelta(days=1),
        effective_after=effective_after,
        method="GET",
        url="/",
        locking=locking,
    )


def test_format_timestamp() -> None:
    assert format_timestamp(datetime(2018, 9, 5, 0, 2, 3, tzinfo=timezone.utc)) == "2018-09-05T00:02:03Z"


def test_format_timestamp_converts_to_utc() -> None:
    cest = timezone(timedelta(hours=2))
    assert format_timestamp(datetime(2018, 9, 5, 2, 2, 3, tzinfo=cest)) == "2018-09-05T00:02:03Z"


def test_format_timestamp_treats_naive_as_utc() -> None:
    assert format_timestamp(datetime(2018, 9, 5, 0, 2, 3)) == "2018-09-05T00:02:03Z"


def test_parse_timestamp_is_aware() -> None:
    value = parse_timestamp("2018-09-05T00:02:03Z")

    assert value == datetime(2018, 9, 5, 0, 2, 3, tzinfo=timezone.utc)
    assert value.tzinfo is not None


@pytest.mark.parametrize("raw", ["2018-09-05", "2018-09-05 00:02:03", "not a time"])
def test_parse_timestamp_rejects_other_layouts(raw: str) -> None:
    with pytest.raises(ValueError):
        parse_timestamp(raw)


def test_text_order_matches_time_order() -> None:
    """Stored text must sort the same way as the instants it encodes."""
    instants = [NOW + timedelta(seconds=s) for s in (-86400, -1, 0, 1, 59, 3600)]

    assert sorted(format_timestamp(i) for i in instants) == [format_timestamp(i) for i in instants]


def test_utc_now_has_whole_seconds() -> None:
    now = utc_now()

    assert now.microsecond == 0
    assert now.tzinfo == timezone.utc


def test_response_json_layout() -> None:
    response = Response(code=503, body="Service Unavailable")

    assert response.to_json() == '{"code":503,"body":"Service Unavailable"}'
    assert Response.from_json(response.to_json()) == response


@pytest.mark.parametrize(
    ("effective_after", "locking", "expected"),
    [
        (NOW - timedelta(hours=1), False, True),
        (NOW, False, True),
        (NOW + timedelta(seconds=1), False, False),
        (NOW - timedelta(hours=1), True, False),
    ],
)
def test_is_due(effective_after: datetime, locking: bool, expected: bool) -> None:
    assert make_record(effective_after, locking).is_due(NOW) is expected


def test_is_due_ignores_sub_second_precision() -> None:
    """Comparison happens at the stored whole-second precision."""
    record = make_record(NOW + timedelta(milliseconds=500))

    assert record.is_due(NOW) is True
