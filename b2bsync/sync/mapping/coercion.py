"""
Loose coercion helpers for source values.

Tenant sources store booleans as "S"/"N", dates as free text and amounts with
Brazilian decimal separators. Every helper here returns ``None`` rather than
raising when a value does not parse.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

_TRUE_TOKENS = {"TRUE", "1", "ACTIVE", "ATIVO", "SIM", "S"}
_FALSE_TOKENS = {"FALSE", "0", "INACTIVE", "INATIVO", "NAO", "NÃO", "N"}
_YMD_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_NUMERIC_CHARS_RE = re.compile(r"[^\d.,-]+")
PHONE_KEYS = ("celular", "comercial", "residencial")


def js_string(value: Any) -> str:
    """Render a scalar the way the mapping configs were authored against."""

    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def clean_str(value: Any) -> str | None:
    if value is None:
        return None
    text = js_string(value).strip()
    return text or None


def to_bool_loose(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if value == 1:
            return True
        if value == 0:
            return False
        return None
    token = str(value).strip().upper()
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    return None


def to_number_loose(value: Any) -> float | None:
    """Parse numbers such as ``"R$ 1.234,56"`` or ``"3,5"``."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
        return number if number == number and abs(number) != float("inf") else None
    raw = str(value).strip()
    if not raw:
        return None
    text = _NUMERIC_CHARS_RE.sub("", raw)
    if not text:
        return None
    if "," in text and "." in text:
        text = text.replace(".", "").replace(",", ".")
    elif "," in text:
        text = text.replace(",", ".")
    try:
        number = float(text)
    except ValueError:
        return None
    if number != number or abs(number) == float("inf"):
        return None
    return number


def to_int_loose(value: Any) -> int | None:
    number = to_number_loose(value)
    if number is None:
        return None
    return int(number)


def to_decimal_loose(value: Any) -> Decimal | None:
    if isinstance(value, Decimal):
        return value
    number = to_number_loose(value)
    if number is None:
        return None
    try:
        return Decimal(str(number))
    except InvalidOperation:
        return None


def parse_ymd(value: Any) -> date | None:
    """Return the date in the first ten characters when they are ``YYYY-MM-DD``."""

    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    head = text[:10]
    if not _YMD_RE.match(head):
        return None
    try:
        return date.fromisoformat(head)
    except ValueError:
        return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive values are read as UTC; a trailing ``Z`` is accepted.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        # offsets that push the instant past year 1 or 9999
        return None


def parse_date_loose(value: Any) -> date | None:
    ymd = parse_ymd(value)
    if ymd is not None:
        return ymd
    stamp = parse_timestamp(value)
    return stamp.date() if stamp else None


def format_watermark(value: datetime) -> str:
    """Format a watermark timestamp as ISO-8601 UTC with millisecond precision."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def normalize_phone_br(value: Any) -> str | None:
    """Normalize a Brazilian phone number to E.164 digits (``55`` + DDD + number)."""

    if value is None:
        return None
    raw = str(value).strip()
    if not raw:
        return None
    digits = re.sub(r"\D+", "", raw)
    if not digits:
        return None
    if digits.startswith("00"):
        digits = digits[2:]

    country = "55"
    rest = digits[2:] if digits.startswith("55") else digits

    # trunk prefix, e.g. (088) 9xxxx-xxxx
    if len(rest) == 11 and rest.startswith("0"):
        rest = rest[1:]
    if len(rest) > 11 and rest.startswith("0"):
        rest = rest.lstrip("0")

    # carrier selection code: keep DDD + number
    if len(rest) > 11:
        last11 = rest[-11:]
        local = last11[2:]
        rest = last11 if len(local) == 9 and local.startswith("9") else rest[-10:]

    return f"{country}{rest}"


def parse_csv_columns(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def build_phones_from_csv(row: Mapping[str, Any], csv_columns: str) -> dict[str, str] | None:
    """Collect phone columns listed in a CSV mapping into a keyed document."""

    columns = parse_csv_columns(csv_columns)
    if not columns:
        return None
    phones: dict[str, str] = {}
    for index, column in enumerate(columns):
        key = PHONE_KEYS[index] if index < len(PHONE_KEYS) else f"extra_{index + 1}"
        phones[key] = js_string(row.get(column))
    return phones
