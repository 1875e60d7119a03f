"""Tests for retry backoff and price unit helpers."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from festos_api.errors import StorageError, ValidationError
from festos_api.utils.clock import utcnow
from festos_api.utils.retry import retry_with_backoff
from festos_api.utils.units import format_price, from_wei, parse_price, to_wei


def test_retry_succeeds_after_transient_failures():
    calls = []
    sleeps = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise StorageError("timeout", "content", "put")
        return "ok"

    assert retry_with_backoff(flaky, attempts=3, base_delay=0.5, sleep=sleeps.append) == "ok"
    assert sleeps == [0.5, 1.0]


def test_retry_reraises_last_error():
    sleeps = []

    def failing():
        raise StorageError("down", "content", "put")

    with pytest.raises(StorageError):
        retry_with_backoff(failing, attempts=3, base_delay=0.25, sleep=sleeps.append)
    assert sleeps == [0.25, 0.5]


def test_retry_does_not_retry_other_errors():
    sleeps = []

    def invalid():
        raise ValidationError("bad")

    with pytest.raises(ValidationError):
        retry_with_backoff(invalid, sleep=sleeps.append)
    assert sleeps == []


def test_retry_requires_one_attempt():
    with pytest.raises(ValueError):
        retry_with_backoff(lambda: None, attempts=0)


def test_wei_conversion_is_exact():
    assert to_wei(Decimal("0.01")) == 10**16
    assert to_wei(Decimal("1.000000000000000001")) == 10**18 + 1
    assert from_wei(10**16) == Decimal("0.01")


def test_sub_wei_precision_rejected():
    with pytest.raises(ValueError):
        to_wei(Decimal("0.0000000000000000001"))


@pytest.mark.parametrize(
    "value, expected",
    [("0.01", Decimal("0.01")), (5, Decimal(5)), (0.1, Decimal("0.1")), (" 2.50 ", Decimal("2.50"))],
)
def test_parse_price(value, expected):
    assert parse_price(value) == expected


@pytest.mark.parametrize("value", ["free", "NaN", "Infinity", None])
def test_parse_price_rejects(value):
    with pytest.raises(ValueError):
        parse_price(value)


@pytest.mark.parametrize(
    "amount, expected",
    [
        (Decimal("0.010000000000000000"), "0.01"),
        (Decimal("100"), "100"),
        (Decimal("1E+2"), "100"),
        (Decimal("0"), "0"),
        (Decimal("0.000000000000000001"), "0.000000000000000001"),
    ],
)
def test_format_price(amount, expected):
    assert format_price(amount) == expected


def test_utcnow_is_naive_utc():
    now = utcnow()

    assert now.tzinfo is None
    assert abs(datetime.now(timezone.utc).replace(tzinfo=None) - now) < timedelta(seconds=5)
