from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from b2bsync.sync.mapping import (
    build_phones_from_csv,
    clean_str,
    format_watermark,
    normalize_phone_br,
    parse_date_loose,
    parse_timestamp,
    parse_ymd,
    to_bool_loose,
    to_decimal_loose,
    to_int_loose,
    to_number_loose,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("S", True),
        ("sim", True),
        (" ativo ", True),
        (1, True),
        ("N", False),
        ("não", False),
        ("inactive", False),
        (0, False),
        (True, True),
        ("talvez", None),
        (2, None),
        (None, None),
    ],
)
def test_to_bool_loose(value, expected):
    assert to_bool_loose(value) is expected


@pytest.mark.parametrize(
    "value, expected",
    [
        ("R$ 1.234,56", 1234.56),
        ("3,5", 3.5),
        ("1234.5", 1234.5),
        ("-7", -7.0),
        (12, 12.0),
        (Decimal("2.25"), 2.25),
    ],
)
def test_to_number_loose(value, expected):
    assert to_number_loose(value) == pytest.approx(expected)


@pytest.mark.parametrize("value", [None, "", "abc", True, float("nan"), float("inf")])
def test_to_number_loose_rejects_non_numbers(value):
    assert to_number_loose(value) is None


def test_integer_and_decimal_coercion():
    assert to_int_loose("12,9") == 12
    assert to_int_loose("x") is None
    assert to_decimal_loose("0,5") == Decimal("0.5")
    assert to_decimal_loose(Decimal("1.10")) == Decimal("1.10")
    assert to_decimal_loose(None) is None


def test_clean_str():
    assert clean_str("  abc ") == "abc"
    assert clean_str("   ") is None
    assert clean_str(7.0) == "7"
    assert clean_str(False) == "false"
    assert clean_str(None) is None


def test_parse_ymd_reads_the_leading_date_only():
    assert parse_ymd("2024-01-05T10:00:00Z") == date(2024, 1, 5)
    assert parse_ymd(datetime(2024, 1, 5, 23, 59)) == date(2024, 1, 5)
    assert parse_ymd("2024-02-30") is None
    assert parse_ymd("05/01/2024") is None
    assert parse_ymd("") is None


def test_parse_timestamp_normalizes_to_utc():
    expected = datetime(2024, 1, 1, 13, 0, tzinfo=timezone.utc)

    assert parse_timestamp("2024-01-01T13:00:00Z") == expected
    assert parse_timestamp("2024-01-01T10:00:00-03:00") == expected
    assert parse_timestamp("2024-01-01T13:00:00") == expected
    assert parse_timestamp(datetime(2024, 1, 1, 13, 0)) == expected
    assert parse_timestamp("2024-01-01T13:00:00.000Z") == expected
    assert parse_timestamp("amanhã") is None
    assert parse_timestamp(None) is None


def test_parse_date_loose_falls_back_to_timestamps():
    assert parse_date_loose("2024-03-09") == date(2024, 3, 9)
    assert parse_date_loose(date(2024, 3, 9)) == date(2024, 3, 9)
    assert parse_date_loose("março") is None


def test_format_watermark_uses_millisecond_utc():
    aware = datetime(2024, 1, 1, 10, 0, 0, 123456, tzinfo=timezone.utc)

    assert format_watermark(aware) == "2024-01-01T10:00:00.123Z"
    assert format_watermark(datetime(2024, 1, 1, 10, 0)) == "2024-01-01T10:00:00.000Z"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("(11) 98765-4321", "5511987654321"),
        ("+55 11 3333-4444", "551133334444"),
        ("011 98765-4321", "5511987654321"),
        ("0 21 11 98765 4321", "5511987654321"),
        ("0055 11 98765-4321", "5511987654321"),
        ("", None),
        ("sem telefone", None),
        (None, None),
    ],
)
def test_normalize_phone_br(raw, expected):
    assert normalize_phone_br(raw) == expected


def test_build_phones_from_csv_names_positions():
    row = {"f1": "1133334444", "f2": None, "f3": 11999990000, "f4": "x"}

    assert build_phones_from_csv(row, "f1, f2,f3,f4") == {
        "celular": "1133334444",
        "comercial": "",
        "residencial": "11999990000",
        "extra_4": "x",
    }
    assert build_phones_from_csv(row, " , ") is None


def test_parse_timestamp_out_of_range_offsets_yield_none():
    assert parse_timestamp("0001-01-01T00:00:00+05:00") is None
    assert parse_timestamp("9999-12-31T23:00:00-05:00") is None
    assert parse_timestamp(datetime(1, 1, 1, tzinfo=timezone(timedelta(hours=5)))) is None
    assert parse_timestamp("9999-12-31T23:00:00Z") == datetime(9999, 12, 31, 23, 0, tzinfo=timezone.utc)
