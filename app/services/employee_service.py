"""Employee queries and writes shared by the records and dashboard endpoints."""
import logging
import math
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Query, Session

from app.models.employee import Employee
from app.schemas.employee import (
    SORTABLE_COLUMNS,
    EmployeeCreate,
    EmployeePatch,
    EmployeeUpdate,
    RecordFilters,
)

logger = logging.getLogger(__name__)

TOP_COUNTRIES = 10

AGE_RANGES = (
    ("Under 20", 0, 19),
    ("20-29", 20, 29),
    ("30-39", 30, 39),
    ("40-49", 40, 49),
    ("50-59", 50, 59),
    ("60-69", 60, 69),
    ("70+", 70, 99),
)


def apply_filters(query: Query, filters: RecordFilters) -> Query:
    """Add the WHERE clauses for every set filter."""
    if filters.search:
        term = f"%{filters.search}%"
        query = query.filter(
            or_(
                Employee.firstname.ilike(term),
                Employee.lastname.ilike(term),
                Employee.country.ilike(term),
            )
        )
    if filters.gender:
        query = query.filter(Employee.gender == filters.gender)
    if filters.country:
        query = query.filter(Employee.country == filters.country)
    if filters.age_min is not None:
        query = query.filter(Employee.age >= filters.age_min)
    if filters.age_max is not None:
        query = query.filter(Employee.age <= filters.age_max)
    if filters.date_from:
        query = query.filter(Employee.date >= filters.date_from)
    if filters.date_to:
        query = query.filter(Employee.date <= filters.date_to)
    return query


def apply_sort(query: Query, filters: RecordFilters) -> Query:
    """Order by the requested column, unknown columns fall back to id."""
    column_name = filters.sort_by if filters.sort_by in SORTABLE_COLUMNS else "id"
    column = getattr(Employee, column_name)
    order = column.desc() if filters.sort_order == "desc" else column.asc()
    if column_name == "id":
        return query.order_by(order)
    # Stable pages when many rows share the sort value
    return query.order_by(order, Employee.id.asc())


def list_page(
    db: Session, filters: RecordFilters, page: int = 1, limit: int = 50
) -> tuple[list[Employee], int]:
    """
    One page of employees with filters and sorting.

    Returns:
        Tuple of (employees on the page, total matching rows)
    """
    query = apply_filters(db.query(Employee), filters)
    total = query.count()
    offset = (page - 1) * limit
    rows = apply_sort(query, filters).offset(offset).limit(limit).all()
    return rows, total


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if total > 0 else 1


def list_after_cursor(
    db: Session, cursor: int, limit: int, filters: RecordFilters
) -> tuple[list[Employee], bool]:
    """
    Database path for cursor pagination: employees with id > cursor.

    Returns:
        Tuple of (up to ``limit`` employees, whether another match exists)
    """
    rows = (
        apply_filters(db.query(Employee), filters)
        .filter(Employee.id > cursor)
        .order_by(Employee.id.asc())
        .limit(limit + 1)
        .all()
    )
    return rows[:limit], len(rows) > limit


def count_all(db: Session) -> int:
    return db.query(func.count(Employee.id)).scalar() or 0


def get_employee(db: Session, employee_id: int) -> Optional[Employee]:
    return db.query(Employee).filter(Employee.id == employee_id).first()


def create_employee(db: Session, data: EmployeeCreate) -> Employee:
    employee = Employee(**data.model_dump())
    db.add(employee)
    db.commit()
    db.refresh(employee)
    logger.info(f"➕ Employee created: id={employee.id}")
    return employee


def update_employee(db: Session, employee: Employee, data: EmployeeUpdate) -> Employee:
    """Replace every editable field of ``employee``."""
    for name, value in data.model_dump().items():
        setattr(employee, name, value)
    db.commit()
    db.refresh(employee)
    logger.info(f"✏️ Employee updated: id={employee.id}")
    return employee


def delete_employee(db: Session, employee: Employee) -> None:
    employee_id = employee.id
    db.delete(employee)
    db.commit()
    logger.info(f"🗑️ Employee deleted: id={employee_id}")


def bulk_update(db: Session, record_ids: list[int], patch: EmployeePatch) -> int:
    """
    Apply the same partial update to every listed id.

    Returns:
        Number of rows updated
    """
    values = patch.model_dump(exclude_none=True)
    values["updated_at"] = func.now()
    updated = (
        db.query(Employee)
        .filter(Employee.id.in_(record_ids))
        .update(values, synchronize_session=False)
    )
    db.commit()
    logger.info(f"✏️ Bulk update: {updated} of {len(record_ids)} employees updated")
    return updated


def _percentage(count: int, total: int) -> int:
    return round(count * 100 / total) if total else 0


def dashboard_stats(db: Session) -> dict:
    """Aggregates shown on the dashboard."""
    total = count_all(db)

    genders = (
        db.query(Employee.gender, func.count(Employee.id))
        .group_by(Employee.gender)
        .order_by(Employee.gender)
        .all()
    )
    countries = (
        db.query(Employee.country, func.count(Employee.id).label("count"))
        .group_by(Employee.country)
        .order_by(func.count(Employee.id).desc(), Employee.country)
        .limit(TOP_COUNTRIES)
        .all()
    )
    ages = dict(db.query(Employee.age, func.count(Employee.id)).group_by(Employee.age).all())
    age_ranges = [
        (label, sum(count for age, count in ages.items() if low <= age <= high))
        for label, low, high in AGE_RANGES
    ]
    average_age = db.query(func.avg(Employee.age)).scalar()
    today_start = datetime.combine(date.today(), time.min)
    records_today = (
        db.query(func.count(Employee.id)).filter(Employee.created_at >= today_start).scalar() or 0
    )

    return {
        "total_records": total,
        "gender_distribution": [
            {"gender": gender, "count": count, "percentage": _percentage(count, total)}
            for gender, count in genders
        ],
        "country_distribution": [
            {"country": country, "count": count, "percentage": _percentage(count, total)}
            for country, count in countries
        ],
        "average_age": round(float(average_age)) if average_age is not None else 0,
        "records_today": records_today,
        "age_distribution": [
            {"age_range": age_range, "count": count, "percentage": _percentage(count, total)}
            for age_range, count in age_ranges
            if count
        ],
    }


def country_list(db: Session) -> list[str]:
    """Distinct countries, alphabetically."""
    rows = db.query(Employee.country).distinct().order_by(Employee.country).all()
    return [country for (country,) in rows]
