"""Conversion of asyncpg row values into JSON-safe Python values."""

from __future__ import annotations

import ipaddress
import uuid
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict, Mapping

import asyncpg

_IP_TYPES = (
    ipaddress.IPv4Address,
    ipaddress.IPv6Address,
    ipaddress.IPv4Network,
    ipaddress.IPv6Network,
    ipaddress.IPv4Interface,
    ipaddress.IPv6Interface,
)


def normalize_value(value: Any) -> Any:
    """Convert a single column value to a JSON-serializable form."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (uuid.UUID, *_IP_TYPES)):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "\\x" + bytes(value).hex()
    if isinstance(value, asyncpg.Range):
        return {
            "lower": normalize_value(value.lower),
            "upper": normalize_value(value.upper),
            "lower_inc": value.lower_inc,
            "upper_inc": value.upper_inc,
            "isempty": value.isempty,
        }
    if isinstance(value, asyncpg.Record):
        return normalize_row(value)
    if isinstance(value, Mapping):
        return {str(k): normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize_value(v) for v in value]
    return str(value)


def normalize_row(record: Mapping[str, Any]) -> Dict[str, Any]:
    """Convert an asyncpg record (or mapping) into a plain JSON-safe dict."""
    return {key: normalize_value(record[key]) for key in record.keys()}
