"""Employee schemas for API requests and responses."""
import datetime as dt
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, model_validator

SORTABLE_COLUMNS = (
    "id",
    "firstname",
    "lastname",
    "gender",
    "country",
    "age",
    "date",
    "created_at",
    "updated_at",
)


class EmployeeBase(BaseModel):
    """Base employee schema with the same limits the spreadsheet validator enforces."""

    firstname: str = Field(..., min_length=1, max_length=10)
    lastname: str = Field(..., min_length=1, max_length=10)
    gender: str = Field(..., max_length=6)
    country: str = Field(..., max_length=20)
    age: int = Field(..., ge=0, le=99)
    date: dt.date

    class Config:
        str_strip_whitespace = True


class EmployeeCreate(EmployeeBase):
    """Schema for creating a single employee."""

    pass


class EmployeeUpdate(EmployeeBase):
    """Schema for replacing an employee (all fields required, as in the edit form)."""

    pass


class EmployeePatch(BaseModel):
    """Partial update applied to many employees at once."""

    firstname: Optional[str] = Field(None, min_length=1, max_length=10)
    lastname: Optional[str] = Field(None, min_length=1, max_length=10)
    gender: Optional[str] = Field(None, max_length=6)
    country: Optional[str] = Field(None, max_length=20)
    age: Optional[int] = Field(None, ge=0, le=99)
    date: Optional[dt.date] = None

    class Config:
        str_strip_whitespace = True


class BulkUpdateRequest(BaseModel):
    """Bulk update: the same patch applied to every listed id."""

    record_ids: list[int] = Field(..., min_length=1)
    updates: EmployeePatch

    @model_validator(mode="after")
    def require_updates(self):
        if not self.updates.model_dump(exclude_none=True):
            raise ValueError("Updates are required")
        return self


class BulkUpdateResponse(BaseModel):
    """Result of a bulk update."""

    message: str
    updated_count: int


class EmployeeResponse(BaseModel):
    """Schema for employee responses."""

    id: int
    firstname: str
    lastname: str
    gender: str
    country: str
    age: int
    date: dt.date
    created_at: dt.datetime
    updated_at: dt.datetime

    class Config:
        from_attributes = True


class RecordFilters(BaseModel):
    """Filters shared by the cached cursor listing and the database query path."""

    search: Optional[str] = None
    gender: Optional[str] = None
    country: Optional[str] = None
    age_min: Optional[int] = None
    age_max: Optional[int] = None
    date_from: Optional[dt.date] = None
    date_to: Optional[dt.date] = None
    sort_by: str = "id"
    sort_order: Literal["asc", "desc"] = "asc"

    @property
    def is_empty(self) -> bool:
        """True when no row predicate is set (sorting does not count)."""
        return not any(
            value is not None and value != ""
            for value in (
                self.search,
                self.gender,
                self.country,
                self.age_min,
                self.age_max,
                self.date_from,
                self.date_to,
            )
        )

    def matches(self, record: dict[str, Any]) -> bool:
        """Apply the row predicates to a plain record dict (cached entries)."""
        if self.search:
            term = self.search.lower()
            haystack = (record.get("firstname"), record.get("lastname"), record.get("country"))
            if not any(term in (value or "").lower() for value in haystack):
                return False
        if self.gender and record.get("gender") != self.gender:
            return False
        if self.country and record.get("country") != self.country:
            return False
        age = record.get("age")
        if self.age_min is not None and (age is None or age < self.age_min):
            return False
        if self.age_max is not None and (age is None or age > self.age_max):
            return False
        if self.date_from or self.date_to:
            record_date = dt.date.fromisoformat(record["date"]) if record.get("date") else None
            if record_date is None:
                return False
            if self.date_from and record_date < self.date_from:
                return False
            if self.date_to and record_date > self.date_to:
                return False
        return True


class PaginationInfo(BaseModel):
    """Pagination metadata for either cursor or page mode."""

    limit: int
    total: Optional[int] = None
    has_next: bool
    # cursor mode
    cursor: Optional[int] = None
    next_cursor: Optional[int] = None
    # page mode
    page: Optional[int] = None
    total_pages: Optional[int] = None
    has_prev: Optional[bool] = None


class EmployeeListResponse(BaseModel):
    """Schema for paginated employee list responses."""

    records: list[EmployeeResponse]
    pagination: PaginationInfo
    cached: bool
    cache_strategy: Optional[str] = None
