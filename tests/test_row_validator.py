"""Tests for single-row validation and normalization."""
from datetime import date, datetime

import pytest

from app.services.row_validator import parse_age, parse_date, validate_row


def make_row(**overrides):
    row = {
        "firstname": "John",
        "lastname": "Doe",
        "gender": "Male",
        "country": "USA",
        "age": 25,
        "date": "2024-01-15",
    }
    row.update(overrides)
    return row


def test_valid_row_is_normalized():
    """Strings are stripped, numeric age strings coerced and dates rendered as ISO."""
    result = validate_row(make_row(firstname="  John ", age="42", date=datetime(2024, 1, 15, 9, 30)), 2)

    assert result.is_valid
    assert result.errors == []
    assert result.data == {
        "firstname": "John",
        "lastname": "Doe",
        "gender": "Male",
        "country": "USA",
        "age": 42,
        "date": "2024-01-15",
    }


def test_all_violations_are_reported():
    """Every broken constraint is listed, not just the first."""
    result = validate_row(
        make_row(
            firstname="Maximilianus",
            lastname="Oppenheimers",
            gender="Unknown",
            country="The Republic of Nowhere",
            age=150,
            date="not-a-date",
        ),
        3,
    )

    assert not result.is_valid
    assert result.data is None
    assert result.errors == [
        "First name must be 10 characters or less",
        "Last name must be 10 characters or less",
        "Gender must be 6 characters or less",
        "Country must be 20 characters or less",
        "Age must be between 0 and 99",
        "Invalid date format",
    ]


@pytest.mark.parametrize("age", [-1, 100, 150])
def test_age_out_of_range(age):
    result = validate_row(make_row(age=age), 2)
    assert result.errors == ["Age must be between 0 and 99"]


@pytest.mark.parametrize("age", [0, 99, "0", "99", 30.0])
def test_age_bounds_are_inclusive(age):
    assert validate_row(make_row(age=age), 2).is_valid


def test_non_numeric_age():
    result = validate_row(make_row(age="abc"), 2)
    assert result.errors == ["Age must be a whole number"]


def test_missing_names_are_required():
    result = validate_row(make_row(firstname=None, lastname="   "), 2)
    assert result.errors == ["First name is required", "Last name is required"]


def test_length_limits_are_inclusive():
    row = make_row(firstname="A" * 10, lastname="B" * 10, gender="C" * 6, country="D" * 20)
    assert validate_row(row, 2).is_valid


def test_validation_is_deterministic():
    row = make_row(age="abc")
    assert validate_row(row, 5).errors == validate_row(row, 5).errors


def test_parse_age_rejects_fractions():
    with pytest.raises(ValueError):
        parse_age(25.5)
    with pytest.raises(ValueError):
        parse_age(True)


@pytest.mark.parametrize(
    "value",
    [
        date(2024, 1, 15),
        datetime(2024, 1, 15, 12, 0),
        "2024-01-15",
        "2024/01/15",
        "01/15/2024",
        "15.01.2024",
        45306,  # Excel serial for 2024-01-15
    ],
)
def test_parse_date_formats(value):
    assert parse_date(value) == date(2024, 1, 15)


def test_parse_date_rejects_garbage():
    with pytest.raises(ValueError):
        parse_date("2024-13-45")
