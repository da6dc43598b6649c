"""Employee record API endpoints."""
import logging
from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.api.dependencies import get_record_cache
from app.config import get_settings
from app.database import get_db
from app.schemas.employee import (
    BulkUpdateRequest,
    BulkUpdateResponse,
    EmployeeCreate,
    EmployeeListResponse,
    EmployeeResponse,
    EmployeeUpdate,
    PaginationInfo,
    RecordFilters,
)
from app.services import employee_service
from app.services.record_cache import (
    CacheMiss,
    InvalidationPolicy,
    RecordCache,
    page_cache_key,
)

router = APIRouter(prefix="/api/records", tags=["records"])

logger = logging.getLogger(__name__)


def _invalidate(record_cache: RecordCache, policy: InvalidationPolicy, record_id: Optional[int] = None):
    record_cache.invalidate(policy, record_id=record_id)
    record_cache.invalidate_dashboard()


@router.get("/cache-status")
def cache_status(record_cache: RecordCache = Depends(get_record_cache)):
    """Dataset presence and size, key counts, fallback counters and Redis figures."""
    return {"cache": record_cache.stats()}


@router.post("/clear-cache")
def clear_cache(record_cache: RecordCache = Depends(get_record_cache)):
    """Drop every record listing and dashboard cache key."""
    if not record_cache.clear_all():
        raise HTTPException(status_code=503, detail="Cache store unavailable")
    return {"message": "All cache cleared successfully"}


@router.get("", response_model=EmployeeListResponse)
def list_records(
    cursor: int = Query(0, ge=0, description="Return records with id greater than this"),
    limit: int = Query(50, ge=1, le=1000, description="Records per page"),
    use_cursor: bool = Query(False, description="Force cursor pagination"),
    page: Optional[int] = Query(None, ge=1, description="Page number (page mode)"),
    search: Optional[str] = Query(None, description="Substring of first name, last name or country"),
    gender: Optional[str] = Query(None),
    country: Optional[str] = Query(None),
    age_min: Optional[int] = Query(None, ge=0),
    age_max: Optional[int] = Query(None, le=99),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    sort_by: str = Query("id"),
    sort_order: Literal["asc", "desc"] = Query("asc"),
    db: Session = Depends(get_db),
    record_cache: RecordCache = Depends(get_record_cache),
):
    """
    List employees.

    Cursor mode (``use_cursor=true`` or no ``page``) reads the cached
    dataset in id order and falls back to the database when the cache is
    unavailable. Page mode applies filters and sorting in SQL and caches
    each result page briefly.
    """
    filters = RecordFilters(
        search=search,
        gender=gender,
        country=country,
        age_min=age_min,
        age_max=age_max,
        date_from=date_from,
        date_to=date_to,
        sort_by=sort_by,
        sort_order=sort_order,
    )

    if use_cursor or page is None:
        return _list_with_cursor(db, record_cache, cursor, limit, filters)
    return _list_page(db, record_cache, page, limit, filters)


def _list_with_cursor(
    db: Session, record_cache: RecordCache, cursor: int, limit: int, filters: RecordFilters
) -> EmployeeListResponse:
    result = record_cache.get_records_with_cursor(db, cursor=cursor, limit=limit, filters=filters)
    if not isinstance(result, CacheMiss):
        return EmployeeListResponse(
            records=result.records,
            pagination=PaginationInfo(
                limit=limit,
                total=result.total,
                has_next=result.has_next,
                cursor=cursor,
                next_cursor=result.next_cursor,
            ),
            cached=True,
            cache_strategy="cursor",
        )

    logger.info(f"🔄 Cursor listing served from database: {result.reason}")
    rows, has_next = employee_service.list_after_cursor(db, cursor, limit, filters)
    return EmployeeListResponse(
        records=rows,
        pagination=PaginationInfo(
            limit=limit,
            total=employee_service.count_all(db) if filters.is_empty else None,
            has_next=has_next,
            cursor=cursor,
            next_cursor=rows[-1].id if rows else None,
        ),
        cached=False,
        cache_strategy="database",
    )


def _list_page(
    db: Session, record_cache: RecordCache, page: int, limit: int, filters: RecordFilters
) -> EmployeeListResponse:
    cache_key = page_cache_key({"page": page, "limit": limit, **filters.model_dump(mode="json")})
    cached = record_cache.get_json(cache_key)
    if not isinstance(cached, CacheMiss):
        response = EmployeeListResponse.model_validate(cached)
        response.cached = True
        return response

    rows, total = employee_service.list_page(db, filters, page=page, limit=limit)
    response = EmployeeListResponse(
        records=rows,
        pagination=PaginationInfo(
            limit=limit,
            total=total,
            page=page,
            total_pages=employee_service.total_pages(total, limit),
            has_next=page * limit < total,
            has_prev=page > 1,
        ),
        cached=False,
        cache_strategy="page",
    )
    record_cache.set_json(
        cache_key, response.model_dump(mode="json"), get_settings().record_search_ttl
    )
    return response


@router.post("/bulk-update", response_model=BulkUpdateResponse)
def bulk_update_records(
    request: BulkUpdateRequest,
    db: Session = Depends(get_db),
    record_cache: RecordCache = Depends(get_record_cache),
):
    """Apply the same field changes to every listed record."""
    updated = employee_service.bulk_update(db, request.record_ids, request.updates)
    _invalidate(record_cache, InvalidationPolicy.FULL)
    return BulkUpdateResponse(
        message=f"Successfully updated {updated} records", updated_count=updated
    )


@router.post("", response_model=EmployeeResponse, status_code=201)
def create_record(
    employee: EmployeeCreate,
    db: Session = Depends(get_db),
    record_cache: RecordCache = Depends(get_record_cache),
):
    """Create a single employee."""
    db_employee = employee_service.create_employee(db, employee)
    _invalidate(record_cache, InvalidationPolicy.PARTIAL)
    return db_employee


@router.get("/{record_id}", response_model=EmployeeResponse)
def get_record(record_id: int, db: Session = Depends(get_db)):
    """Get a single employee by ID."""
    employee = employee_service.get_employee(db, record_id)
    if not employee:
        raise HTTPException(status_code=404, detail="Record not found")
    return employee


@router.put("/{record_id}", response_model=EmployeeResponse)
def update_record(
    record_id: int,
    employee_update: EmployeeUpdate,
    db: Session = Depends(get_db),
    record_cache: RecordCache = Depends(get_record_cache),
):
    """Replace an employee's fields."""
    employee = employee_service.get_employee(db, record_id)
    if not employee:
        raise HTTPException(status_code=404, detail="Record not found")

    employee = employee_service.update_employee(db, employee, employee_update)
    _invalidate(record_cache, InvalidationPolicy.PARTIAL)
    return employee


@router.delete("/{record_id}", status_code=204)
def delete_record(
    record_id: int,
    db: Session = Depends(get_db),
    record_cache: RecordCache = Depends(get_record_cache),
):
    """Delete a single employee."""
    employee = employee_service.get_employee(db, record_id)
    if not employee:
        raise HTTPException(status_code=404, detail="Record not found")

    employee_service.delete_employee(db, employee)
    _invalidate(record_cache, InvalidationPolicy.RECORD, record_id=record_id)
    return None
