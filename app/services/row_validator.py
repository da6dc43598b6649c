"""Validation and normalization of a single spreadsheet row."""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional

from openpyxl.utils.datetime import from_excel
from pydantic import BaseModel, ValidationError, field_validator
from pydantic_core import PydanticCustomError

REQUIRED_HEADERS = ["firstname", "lastname", "gender", "country", "age", "date"]

FIRSTNAME_MAX = 10
LASTNAME_MAX = 10
GENDER_MAX = 6
COUNTRY_MAX = 20
AGE_MIN = 0
AGE_MAX = 99

# Accepted textual date layouts, tried in order after ISO 8601
DATE_FORMATS = ("%Y/%m/%d", "%m/%d/%Y", "%d.%m.%Y")


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _check_length(value: str, limit: int, label: str) -> str:
    if len(value) > limit:
        raise PydanticCustomError(
            "text_too_long", f"{label} must be {limit} characters or less"
        )
    return value


def parse_age(value: Any) -> int:
    """Coerce an age cell to int; raises ValueError for anything non-integral."""
    if isinstance(value, bool) or value is None:
        raise ValueError("age is not a number")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError("age is not an integer")
        return int(value)
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        number = float(text)
        if not number.is_integer():
            raise ValueError("age is not an integer")
        return int(number)


def parse_date(value: Any) -> date:
    """Coerce a date cell (date, datetime, Excel serial or text) to a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError("empty date")
    if isinstance(value, (int, float)):
        converted = from_excel(value)
        if converted is None:
            raise ValueError("invalid Excel date serial")
        return converted.date() if isinstance(converted, datetime) else converted

    text = str(value).strip()
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"unrecognized date: {text!r}")


class EmployeeRow(BaseModel):
    """Schema a spreadsheet row must satisfy before it may reach the employee table."""

    firstname: str
    lastname: str
    gender: str
    country: str
    age: int
    date: date

    @field_validator("firstname", "lastname", "gender", "country", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("firstname")
    @classmethod
    def check_firstname(cls, value: str) -> str:
        if not value:
            raise PydanticCustomError("required", "First name is required")
        return _check_length(value, FIRSTNAME_MAX, "First name")

    @field_validator("lastname")
    @classmethod
    def check_lastname(cls, value: str) -> str:
        if not value:
            raise PydanticCustomError("required", "Last name is required")
        return _check_length(value, LASTNAME_MAX, "Last name")

    @field_validator("gender")
    @classmethod
    def check_gender(cls, value: str) -> str:
        return _check_length(value, GENDER_MAX, "Gender")

    @field_validator("country")
    @classmethod
    def check_country(cls, value: str) -> str:
        return _check_length(value, COUNTRY_MAX, "Country")

    @field_validator("age", mode="before")
    @classmethod
    def check_age(cls, value: Any) -> int:
        try:
            age = parse_age(value)
        except ValueError:
            raise PydanticCustomError("age_type", "Age must be a whole number")
        if age < AGE_MIN or age > AGE_MAX:
            raise PydanticCustomError(
                "age_range", f"Age must be between {AGE_MIN} and {AGE_MAX}"
            )
        return age

    @field_validator("date", mode="before")
    @classmethod
    def check_date(cls, value: Any) -> date:
        try:
            return parse_date(value)
        except (ValueError, OverflowError, TypeError):
            raise PydanticCustomError("date_format", "Invalid date format")


@dataclass
class RowValidationResult:
    """Outcome of validating one row: normalized data or the list of violations."""

    row_number: int
    raw_data: dict
    data: Optional[dict] = None
    errors: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def validate_row(raw_row: dict, row_number: int) -> RowValidationResult:
    """
    Validate one spreadsheet row against the employee schema.

    All violated constraints are reported, not just the first. Valid rows
    are normalized: strings stripped, age coerced to int and the date
    rendered as ``YYYY-MM-DD``.

    Args:
        raw_row: Mapping of header name to raw cell value
        row_number: Row number of the row in the source sheet

    Returns:
        RowValidationResult
    """
    values = {name: raw_row.get(name) for name in REQUIRED_HEADERS}
    try:
        row = EmployeeRow.model_validate(values)
    except ValidationError as exc:
        return RowValidationResult(
            row_number=row_number,
            raw_data=raw_row,
            errors=[error["msg"] for error in exc.errors()],
        )

    data = row.model_dump()
    data["date"] = row.date.isoformat()
    return RowValidationResult(row_number=row_number, raw_data=raw_row, data=data)
