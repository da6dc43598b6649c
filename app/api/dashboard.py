"""Dashboard API endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.dependencies import get_record_cache
from app.config import get_settings
from app.database import get_db
from app.services import employee_service
from app.services.record_cache import (
    COUNTRY_LIST_KEY,
    DASHBOARD_STATS_KEY,
    CacheMiss,
    RecordCache,
)

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/stats")
def get_dashboard_stats(
    db: Session = Depends(get_db),
    record_cache: RecordCache = Depends(get_record_cache),
):
    """Totals and distributions by gender, country and age range."""
    cached = record_cache.get_json(DASHBOARD_STATS_KEY)
    if not isinstance(cached, CacheMiss):
        return cached

    stats = employee_service.dashboard_stats(db)
    record_cache.set_json(DASHBOARD_STATS_KEY, stats, get_settings().dashboard_stats_ttl)
    return stats


@router.get("/countries", response_model=list[str])
def get_countries(
    db: Session = Depends(get_db),
    record_cache: RecordCache = Depends(get_record_cache),
):
    """Distinct countries for filter dropdowns."""
    cached = record_cache.get_json(COUNTRY_LIST_KEY)
    if not isinstance(cached, CacheMiss):
        return cached

    countries = employee_service.country_list(db)
    record_cache.set_json(COUNTRY_LIST_KEY, countries, get_settings().country_list_ttl)
    return countries
