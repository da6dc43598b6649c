"""
Redis cache for employee listings and dashboard aggregates.

The full employee table is kept as one sorted set (score = id, member =
compressed JSON) so cursor pages are ``ZRANGEBYSCORE`` calls. The cache is
never authoritative: every public method returns ``CacheMiss`` instead of
raising, and callers fall back to the database.
"""
import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

import redis
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.models.employee import Employee
from app.schemas.employee import RecordFilters

logger = logging.getLogger(__name__)

RECORD_SEARCH_PREFIX = "records:search"
DATASET_KEY = f"{RECORD_SEARCH_PREFIX}:dataset"
DASHBOARD_STATS_KEY = "dashboard:stats"
COUNTRY_LIST_KEY = "countries:list"
DASHBOARD_KEYS = (DASHBOARD_STATS_KEY, COUNTRY_LIST_KEY)

# Full field name -> abbreviation stored in the sorted set
FIELD_ABBREVIATIONS = {
    "id": "i",
    "firstname": "f",
    "lastname": "l",
    "gender": "g",
    "country": "c",
    "age": "a",
    "date": "d",
    "created_at": "ca",
    "updated_at": "ua",
}
FIELD_EXPANSIONS = {short: name for name, short in FIELD_ABBREVIATIONS.items()}

# Entries fetched per ZRANGEBYSCORE call while filtering cached records
FILTER_SCAN_WINDOW = 500

CACHE_ERRORS = (RedisError, ValueError, KeyError, TypeError)


class InvalidationPolicy(str, Enum):
    """How much of the record cache a write should discard."""

    FULL = "full"  # every records:search:* key
    PARTIAL = "partial"  # only the dataset; rebuilt on next read
    RECORD = "record"  # one id removed from the dataset


@dataclass
class CacheMiss:
    """The cache could not answer; the caller must query the database."""

    reason: str


@dataclass
class CursorPage:
    """One page of cached records."""

    records: list[dict]
    cursor: int
    limit: int
    has_next: bool
    next_cursor: Optional[int]
    total: Optional[int] = None


@dataclass
class CacheCounters:
    hits: int = 0
    fallbacks: int = 0
    rebuilds: int = 0
    last_error: Optional[str] = field(default=None)


def create_redis_client(redis_url: str) -> redis.Redis:
    """Create a Redis client for the cache store."""
    return redis.Redis.from_url(
        redis_url,
        decode_responses=True,
        socket_timeout=5,
        socket_connect_timeout=5,
        health_check_interval=30,
    )


def employee_to_dict(employee: Employee) -> dict:
    """Plain JSON-friendly representation of an employee row."""
    return {
        "id": employee.id,
        "firstname": employee.firstname,
        "lastname": employee.lastname,
        "gender": employee.gender,
        "country": employee.country,
        "age": employee.age,
        "date": employee.date.isoformat() if employee.date else None,
        "created_at": employee.created_at.isoformat() if employee.created_at else None,
        "updated_at": employee.updated_at.isoformat() if employee.updated_at else None,
    }


def compress_record(record: dict) -> str:
    """Serialize a record with abbreviated field names and no whitespace."""
    compact = {FIELD_ABBREVIATIONS[name]: value for name, value in record.items() if name in FIELD_ABBREVIATIONS}
    return json.dumps(compact, separators=(",", ":"))


def decompress_record(data: str) -> dict:
    """Inverse of compress_record."""
    compact = json.loads(data)
    return {FIELD_EXPANSIONS[short]: value for short, value in compact.items()}


def page_cache_key(params: dict) -> str:
    """Key for a cached page-mode listing; lives under the record-search namespace."""
    return f"{RECORD_SEARCH_PREFIX}:{json.dumps(params, sort_keys=True, default=str)}"


class RecordCache:
    """Cursor-paginated cache of the employee table plus small JSON entries."""

    def __init__(self, redis_client: redis.Redis, settings: Optional[Settings] = None):
        self.redis = redis_client
        self.settings = settings or get_settings()
        self.counters = CacheCounters()

    def _miss(self, operation: str, error: Exception) -> CacheMiss:
        self.counters.fallbacks += 1
        self.counters.last_error = f"{operation}: {error}"
        logger.warning(f"⚠️ Cache {operation} failed, falling back to database: {error}")
        return CacheMiss(reason=f"{operation} failed: {error}")

    # Dataset

    def ensure_dataset_cached(self, db: Session) -> Union[bool, CacheMiss]:
        """
        Load the full employee table into the dataset sorted set if absent.

        Returns True if this call loaded the dataset, False if it was
        already cached, or CacheMiss if Redis failed.
        """
        try:
            if self.redis.exists(DATASET_KEY):
                return False
            self._load_dataset(db)
            return True
        except CACHE_ERRORS as e:
            return self._miss("dataset build", e)

    def _load_dataset(self, db: Session) -> int:
        """Stream the table by id into a scratch key, then rename it into place."""
        batch_size = self.settings.dataset_batch_size
        ttl = self.settings.dataset_cache_ttl
        building_key = f"{DATASET_KEY}:building:{uuid.uuid4().hex}"
        last_id = 0
        total = 0

        logger.info("📦 Building record dataset cache")
        while True:
            rows = (
                db.query(Employee)
                .filter(Employee.id > last_id)
                .order_by(Employee.id)
                .limit(batch_size)
                .all()
            )
            if not rows:
                break

            pipeline = self.redis.pipeline(transaction=False)
            pipeline.zadd(
                building_key,
                {compress_record(employee_to_dict(row)): row.id for row in rows},
            )
            # Abandoned builds expire on their own
            pipeline.expire(building_key, ttl)
            pipeline.execute()

            last_id = rows[-1].id
            total += len(rows)

        if total:
            self.redis.expire(building_key, ttl)
            self.redis.rename(building_key, DATASET_KEY)

        self.counters.rebuilds += 1
        logger.info(f"✅ Record dataset cached: {total} records, ttl={ttl}s")
        return total

    def get_records_with_cursor(
        self,
        db: Session,
        cursor: int = 0,
        limit: int = 50,
        filters: Optional[RecordFilters] = None,
    ) -> Union[CursorPage, CacheMiss]:
        """
        Return up to ``limit`` cached records with id > cursor, ascending.

        ``has_next`` is True only when another matching record exists after
        the last one returned.
        """
        filters = filters or RecordFilters()
        ensured = self.ensure_dataset_cached(db)
        if isinstance(ensured, CacheMiss):
            return ensured

        try:
            if filters.is_empty:
                records = self._scan(cursor, limit + 1, limit + 1, None)
                total = self.redis.zcard(DATASET_KEY)
            else:
                records = self._scan(cursor, limit + 1, max(limit + 1, FILTER_SCAN_WINDOW), filters)
                total = None
        except CACHE_ERRORS as e:
            return self._miss("cursor read", e)

        has_next = len(records) > limit
        records = records[:limit]
        self.counters.hits += 1
        return CursorPage(
            records=records,
            cursor=cursor,
            limit=limit,
            has_next=has_next,
            next_cursor=records[-1]["id"] if records else None,
            total=total,
        )

    def _scan(
        self, cursor: int, wanted: int, window: int, filters: Optional[RecordFilters]
    ) -> list[dict]:
        found: list[dict] = []
        lower = f"({cursor}"
        while len(found) < wanted:
            batch = self.redis.zrangebyscore(
                DATASET_KEY, lower, "+inf", start=0, num=window, withscores=True
            )
            if not batch:
                break
            for member, _score in batch:
                record = decompress_record(member)
                if filters is None or filters.matches(record):
                    found.append(record)
                    if len(found) == wanted:
                        break
            lower = f"({int(batch[-1][1])}"
            if len(batch) < window:
                break
        return found

    # Plain JSON entries (page listings, dashboard aggregates)

    def get_json(self, key: str) -> Union[Any, CacheMiss]:
        """Cached JSON value, or CacheMiss when absent or unreadable."""
        try:
            raw = self.redis.get(key)
            if raw is None:
                return CacheMiss(reason="absent")
            value = json.loads(raw)
        except CACHE_ERRORS as e:
            return self._miss(f"get {key}", e)
        self.counters.hits += 1
        return value

    def set_json(self, key: str, value: Any, ttl: int) -> bool:
        """Store a JSON value with a TTL. Returns False if Redis refused it."""
        try:
            self.redis.setex(key, ttl, json.dumps(value, default=str))
            return True
        except CACHE_ERRORS as e:
            self._miss(f"set {key}", e)
            return False

    # Invalidation

    def invalidate(
        self, policy: InvalidationPolicy = InvalidationPolicy.FULL, record_id: Optional[int] = None
    ) -> bool:
        """
        Drop cached record listings according to ``policy``.

        Returns False if Redis failed; the TTL still bounds staleness.
        """
        policy = InvalidationPolicy(policy)
        try:
            if policy is InvalidationPolicy.FULL:
                keys = list(self.redis.scan_iter(match=f"{RECORD_SEARCH_PREFIX}:*", count=500))
                if keys:
                    self.redis.delete(*keys)
            elif policy is InvalidationPolicy.PARTIAL:
                self.redis.delete(DATASET_KEY)
            elif record_id is not None:
                self.redis.zremrangebyscore(DATASET_KEY, record_id, record_id)
            else:
                # Nothing to target; treat like a dataset rebuild
                self.redis.delete(DATASET_KEY)
        except CACHE_ERRORS as e:
            self._miss(f"invalidate {policy.value}", e)
            return False
        logger.debug(f"Record cache invalidated: policy={policy.value}, record_id={record_id}")
        return True

    def invalidate_dashboard(self) -> bool:
        """Drop dashboard aggregates; called on every write to the employee table."""
        try:
            self.redis.delete(*DASHBOARD_KEYS)
            return True
        except CACHE_ERRORS as e:
            self._miss("invalidate dashboard", e)
            return False

    def clear_all(self) -> bool:
        """Drop every record listing and dashboard key."""
        records_cleared = self.invalidate(InvalidationPolicy.FULL)
        dashboard_cleared = self.invalidate_dashboard()
        return records_cleared and dashboard_cleared

    # Introspection

    def stats(self) -> dict:
        """Dataset size, key counts and Redis memory/keyspace figures."""
        result: dict[str, Any] = {
            "counters": {
                "hits": self.counters.hits,
                "fallbacks": self.counters.fallbacks,
                "rebuilds": self.counters.rebuilds,
                "last_error": self.counters.last_error,
            }
        }
        try:
            result["dataset"] = {
                "exists": bool(self.redis.exists(DATASET_KEY)),
                "size": self.redis.zcard(DATASET_KEY),
                "ttl": self.redis.ttl(DATASET_KEY),
            }
            result["keys"] = {
                "records": sum(1 for _ in self.redis.scan_iter(match=f"{RECORD_SEARCH_PREFIX}:*", count=500)),
                "dashboard": self.redis.exists(*DASHBOARD_KEYS),
            }
        except CACHE_ERRORS as e:
            result["error"] = self._miss("stats", e).reason
            return result

        try:
            memory = self.redis.info("memory")
            keyspace = self.redis.info("stats")
            hits = int(keyspace.get("keyspace_hits", 0))
            misses = int(keyspace.get("keyspace_misses", 0))
            result["redis"] = {
                "used_memory": memory.get("used_memory"),
                "used_memory_peak": memory.get("used_memory_peak"),
                "keyspace_hits": hits,
                "keyspace_misses": misses,
                "hit_rate": round(hits * 100 / (hits + misses), 2) if hits + misses else 0.0,
            }
        except CACHE_ERRORS as e:
            # Some Redis deployments restrict INFO; the dataset figures are still useful
            logger.debug(f"Redis INFO unavailable: {e}")
            result["redis"] = None
        return result
