"""
Upload job persistence: status transitions, progress counters and error rows.

Every counter change is a single ``UPDATE ... SET x = x + n`` and every
status change is guarded by a WHERE clause on the current status, so
concurrent data-insert workers never lose an increment and no job ever
leaves a terminal state.
"""
import logging
import uuid
from datetime import date
from typing import Iterable, Union

from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from app.exceptions import InsertionError, JobNotFoundError
from app.models.employee import Employee
from app.models.upload_chunk import UploadChunk
from app.models.upload_error import UploadError
from app.models.upload_job import (
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    JOB_PROCESSING,
    UploadJob,
)
from app.schemas.upload import ErrorRecord

logger = logging.getLogger(__name__)

JobId = Union[str, uuid.UUID]


def as_job_uuid(job_id: JobId) -> uuid.UUID:
    """Accept a UUID or its string form (queue payloads carry strings)."""
    return job_id if isinstance(job_id, uuid.UUID) else uuid.UUID(str(job_id))


def create_upload_job(db: Session, filename: str, created_by: str | None = None) -> UploadJob:
    """Create a pending job for a freshly stored upload."""
    job = UploadJob(filename=filename, status=JOB_PENDING, created_by=created_by)
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info(f"💾 Upload job created: id={job.id}, filename={filename}")
    return job


def get_job(db: Session, job_id: JobId) -> UploadJob:
    """
    Load a job by id.

    Raises:
        JobNotFoundError: If no such job exists
    """
    job = db.query(UploadJob).filter(UploadJob.id == as_job_uuid(job_id)).first()
    if not job:
        raise JobNotFoundError(f"Upload job {job_id} not found")
    return job


def get_job_errors(db: Session, job_id: JobId) -> list[UploadError]:
    """All error rows of a job ordered by row number."""
    return (
        db.query(UploadError)
        .filter(UploadError.job_id == as_job_uuid(job_id))
        .order_by(UploadError.row_number, UploadError.id)
        .all()
    )


def mark_processing(db: Session, job_id: JobId) -> bool:
    """Move pending → processing. Returns False if the job was not pending."""
    updated = (
        db.query(UploadJob)
        .filter(UploadJob.id == as_job_uuid(job_id), UploadJob.status == JOB_PENDING)
        .update({UploadJob.status: JOB_PROCESSING}, synchronize_session=False)
    )
    db.commit()
    return updated == 1


def record_parse_totals(db: Session, job_id: JobId, total_records: int, failed_records: int) -> bool:
    """
    Store row totals found by the parse-validate stage.

    Totals are written once. A redelivered parse job finds them already set
    and leaves the counters alone, so failed chunks counted since then are
    kept.

    Returns:
        True if this call recorded the totals, False if they already were
    """
    updated = (
        db.query(UploadJob)
        .filter(
            UploadJob.id == as_job_uuid(job_id),
            UploadJob.status == JOB_PROCESSING,
            UploadJob.total_records == 0,
        )
        .update(
            {
                UploadJob.total_records: total_records,
                UploadJob.failed_records: UploadJob.failed_records + failed_records,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return updated == 1


def mark_failed(db: Session, job_id: JobId, message: str) -> bool:
    """Move a non-terminal job to failed with the captured message."""
    updated = (
        db.query(UploadJob)
        .filter(
            UploadJob.id == as_job_uuid(job_id),
            UploadJob.status.in_([JOB_PENDING, JOB_PROCESSING]),
        )
        .update(
            {
                UploadJob.status: JOB_FAILED,
                UploadJob.error_details: {"error": message},
                UploadJob.completed_at: func.now(),
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return updated == 1


def complete_if_done(db: Session, job_id: JobId) -> bool:
    """
    Flip processing → completed once every row is accounted for.

    The comparison runs inside the UPDATE against the row's current
    counters, so of several racing callers exactly one sees rowcount 1.
    """
    updated = (
        db.query(UploadJob)
        .filter(
            UploadJob.id == as_job_uuid(job_id),
            UploadJob.status == JOB_PROCESSING,
            UploadJob.processed_records + UploadJob.failed_records >= UploadJob.total_records,
        )
        .update(
            {UploadJob.status: JOB_COMPLETED, UploadJob.completed_at: func.now()},
            synchronize_session=False,
        )
    )
    db.commit()
    return updated == 1


def _employee_values(row: dict) -> dict:
    return {
        "firstname": row["firstname"],
        "lastname": row["lastname"],
        "gender": row["gender"],
        "country": row["country"],
        "age": int(row["age"]),
        "date": date.fromisoformat(row["date"]),
    }


def insert_chunk(db: Session, job_id: JobId, chunk_index: int, rows: list[dict]) -> bool:
    """
    Insert one chunk of validated rows and count them as processed.

    Ledger row, employee rows and counter increment share one transaction.

    Args:
        db: Database session
        job_id: Upload job the chunk belongs to
        chunk_index: Position of the chunk within the job
        rows: Normalized rows from the row validator

    Returns:
        True if inserted, False if this chunk was already committed earlier

    Raises:
        InsertionError: If the batch write fails (transaction rolled back)
    """
    job_uuid = as_job_uuid(job_id)
    db.add(UploadChunk(job_id=job_uuid, chunk_index=chunk_index, row_count=len(rows)))
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.warning(f"⚠️ Chunk {chunk_index} of job {job_id} already inserted, skipping redelivery")
        return False

    try:
        if rows:
            db.execute(insert(Employee), [_employee_values(row) for row in rows])
        db.query(UploadJob).filter(UploadJob.id == job_uuid).update(
            {UploadJob.processed_records: UploadJob.processed_records + len(rows)},
            synchronize_session=False,
        )
        db.commit()
    except (SQLAlchemyError, KeyError, ValueError, TypeError) as e:
        db.rollback()
        raise InsertionError(str(e), job_id=str(job_id), chunk_index=chunk_index) from e

    return True


def fail_chunk(db: Session, job_id: JobId, chunk_index: int, row_count: int) -> bool:
    """
    Account for a chunk whose rows could not be inserted.

    Writes the chunk's ledger row and adds ``row_count`` to failed_records in
    one transaction, so a chunk is counted once whether it succeeded or not.

    Returns:
        True if this call accounted for the chunk, False if it already was
    """
    job_uuid = as_job_uuid(job_id)
    db.add(UploadChunk(job_id=job_uuid, chunk_index=chunk_index, row_count=0))
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.warning(f"⚠️ Chunk {chunk_index} of job {job_id} already accounted for")
        return False

    db.query(UploadJob).filter(UploadJob.id == job_uuid).update(
        {UploadJob.failed_records: UploadJob.failed_records + row_count},
        synchronize_session=False,
    )
    db.commit()
    return True


def log_errors(db: Session, job_id: JobId, error_records: Iterable[ErrorRecord]) -> int:
    """Batch-write error records as UploadError rows. Returns the number written."""
    job_uuid = as_job_uuid(job_id)
    values = [
        {
            "job_id": job_uuid,
            "row_number": record.row_number,
            "error_type": record.error_type,
            "error_message": record.error_message,
            "raw_data": record.raw_data,
        }
        for record in error_records
    ]
    if not values:
        logger.debug("Empty error batch, skipping insert")
        return 0

    db.execute(insert(UploadError), values)
    db.commit()
    return len(values)
