from datetime import datetime, time, timedelta

import pytest

from value_parsers import normalize_label, parse_date, parse_int_safe, parse_number


def test_time_format_takes_precedence():
    assert parse_number("51:15") == pytest.approx(51.25)
    assert parse_number("51:15 Hrs") == pytest.approx(51.25)
    assert parse_number("51 : 15") == pytest.approx(51.25)


def test_parse_number_blank_and_garbage():
    assert parse_number("") is None
    assert parse_number("   ") is None
    assert parse_number(None) is None
    assert parse_number("abc") is None
    assert parse_number(float("nan")) is None


def test_parse_number_strips_decoration():
    assert parse_number("12.5 hrs") == 12.5
    assert parse_number("$1,200.50") == 1200.5
    assert parse_number("-3.25") == -3.25
    assert parse_number(7) == 7.0
    assert parse_number("0") == 0.0


def test_parse_number_duration_cells():
    assert parse_number(timedelta(hours=2, minutes=30)) == 2.5
    assert parse_number(time(8, 15)) == 8.25


@pytest.mark.parametrize("text", ["12.5", "0.00001", "1e-05", "-3.25", "100", "7.125"])
def test_parse_number_idempotent(text):
    once = parse_number(text)
    assert parse_number(str(once)) == once


def test_parse_int_safe():
    assert parse_int_safe("12 appts") == 12
    assert parse_int_safe(None) is None
    assert parse_int_safe("") is None
    assert parse_int_safe("none") is None
    assert parse_int_safe(2.0) == 2
    assert parse_int_safe("-3") == -3


def test_parse_int_safe_out_of_range_is_none():
    assert parse_int_safe("Ref 1234567890123") is None
    assert parse_int_safe(2 ** 31) is None
    assert parse_int_safe(str(2 ** 31 - 1)) == 2 ** 31 - 1
    assert parse_int_safe(-(2 ** 31)) == -(2 ** 31)


def test_parse_date_excel_serial():
    assert parse_date(45292) == "2024-01-01"
    assert parse_date(45292.75) == "2024-01-01"
    assert parse_date(1) == "1900-01-01"
    assert parse_date(61) == "1900-03-01"


def test_parse_date_strings():
    assert parse_date("2024-03-15") == "2024-03-15"
    assert parse_date("03/15/2024") == "2024-03-15"
    assert parse_date("2024-03-15T23:30:00-05:00") == "2024-03-16"
    assert parse_date("not a date") is None


def test_parse_date_falsy_and_native():
    assert parse_date(None) is None
    assert parse_date("") is None
    assert parse_date(0) is None
    assert parse_date(datetime(2024, 3, 15, 10, 30)) == "2024-03-15"


def test_normalize_label():
    assert normalize_label("  CareCenta   Hours ") == "carecenta hours"
    assert normalize_label(None) == ""
