"""Unit tests for row value normalization and status parsing."""

import ipaddress
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import asyncpg

from dal.query_result import parse_status_command, parse_status_row_count
from dal.type_normalization import normalize_row, normalize_value


def test_scalars_pass_through():
    assert normalize_value(None) is None
    assert normalize_value(True) is True
    assert normalize_value(3) == 3
    assert normalize_value("x") == "x"


def test_temporal_values():
    moment = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert normalize_value(moment) == "2024-01-02T03:04:05+00:00"
    assert normalize_value(date(2024, 1, 2)) == "2024-01-02"
    assert normalize_value(timedelta(hours=1, minutes=30)) == "1:30:00"


def test_numeric_and_identifier_values():
    identifier = uuid.UUID("12345678-1234-5678-1234-567812345678")
    assert normalize_value(Decimal("12.50")) == "12.50"
    assert normalize_value(identifier) == "12345678-1234-5678-1234-567812345678"
    assert normalize_value(ipaddress.ip_address("10.0.0.1")) == "10.0.0.1"


def test_bytes_are_hex_encoded():
    assert normalize_value(b"\x01\xff") == "\\x01ff"


def test_range_values():
    value = normalize_value(asyncpg.Range(1, 10, lower_inc=True, upper_inc=False))
    assert value == {
        "lower": 1,
        "upper": 10,
        "lower_inc": True,
        "upper_inc": False,
        "isempty": False,
    }


def test_nested_containers():
    value = normalize_value({"tags": ["a", Decimal("1")], "when": date(2024, 5, 6)})
    assert value == {"tags": ["a", "1"], "when": "2024-05-06"}


def test_normalize_row():
    row = normalize_row({"id": 1, "amount": Decimal("9.99")})
    assert row == {"id": 1, "amount": "9.99"}


class TestStatusParsing:
    def test_row_counts(self):
        assert parse_status_row_count("INSERT 0 3") == 3
        assert parse_status_row_count("UPDATE 7") == 7
        assert parse_status_row_count("SELECT 2") == 2

    def test_commands_without_counts_use_fallback(self):
        assert parse_status_row_count("CREATE TABLE", fallback=0) == 0
        assert parse_status_row_count(None, fallback=4) == 4

    def test_command_word(self):
        assert parse_status_command("CREATE TABLE") == "CREATE"
        assert parse_status_command("") is None
