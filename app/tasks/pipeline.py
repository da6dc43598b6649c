"""
Spreadsheet upload pipeline.

Three stages, each consuming its own topic:

1. ``excel-parse-validate``: parse the stored file, validate every row, fan
   out one data-insert job per chunk and one error-logging job for the
   invalid rows.
2. ``data-insert``: insert one chunk, bump the job's processed counter and
   complete the job when every row is accounted for.
3. ``error-logging``: write failed rows as UploadError rows.
"""
import logging
import os
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.exceptions import InsertionError, ParseError
from app.models.upload_error import ERROR_INSERTION
from app.models.upload_job import TERMINAL_STATUSES
from app.schemas.upload import (
    DataInsertPayload,
    ErrorLoggingPayload,
    ErrorRecord,
    ParseValidatePayload,
)
from app.services.record_cache import InvalidationPolicy, RecordCache
from app.services.spreadsheet_parser import parse_validate
from app.services.upload_service import (
    complete_if_done,
    fail_chunk,
    get_job,
    insert_chunk,
    log_errors,
    mark_failed,
    mark_processing,
    record_parse_totals,
)
from app.tasks.job_queue import HIGH_PRIORITY, JobQueue, QueuedJob

PARSE_VALIDATE = "excel-parse-validate"
DATA_INSERT = "data-insert"
ERROR_LOGGING = "error-logging"

TOPICS = (PARSE_VALIDATE, DATA_INSERT, ERROR_LOGGING)

WORKER_CONFIG = {
    PARSE_VALIDATE: {"team_size": 1, "team_concurrency": 1},
    DATA_INSERT: {"team_size": 5, "team_concurrency": 5},
    ERROR_LOGGING: {"team_size": 1, "team_concurrency": 1},
}

logger = logging.getLogger(__name__)


def enqueue_upload(queue: JobQueue, payload: ParseValidatePayload) -> str:
    """Hand a stored upload to the parse-validate stage. Returns the queue job id."""
    return queue.send(PARSE_VALIDATE, payload.model_dump(mode="json"))


def remove_upload_file(file_path: str) -> None:
    """Delete a stored upload; a file that is already gone is fine."""
    try:
        os.remove(file_path)
        logger.info(f"🧹 Temp file cleaned up: {file_path}")
    except FileNotFoundError:
        logger.debug(f"Temp file already removed: {file_path}")
    except OSError as e:
        logger.warning(f"⚠️ Failed to clean up temp file {file_path}: {e}")


class PipelineOrchestrator:
    """
    Registers and implements the three pipeline stages.

    Args:
        queue: Job queue the stages consume from and send to
        session_factory: Callable returning a new database session
        record_cache: Cache invalidated after every inserted chunk
        settings: Chunk size and queue configuration
    """

    def __init__(
        self,
        queue: JobQueue,
        session_factory: Callable[[], Session],
        record_cache: Optional[RecordCache] = None,
        settings: Optional[Settings] = None,
    ):
        self.queue = queue
        self.session_factory = session_factory
        self.record_cache = record_cache
        self.settings = settings or get_settings()

    def start(self) -> None:
        """Register a worker for every topic."""
        self.queue.work(
            PARSE_VALIDATE,
            self.handle_parse_validate,
            on_failure=self.on_parse_validate_failure,
            fatal_errors=(ParseError,),
            **WORKER_CONFIG[PARSE_VALIDATE],
        )
        self.queue.work(
            DATA_INSERT,
            self.handle_data_insert,
            on_failure=self.on_data_insert_failure,
            **WORKER_CONFIG[DATA_INSERT],
        )
        self.queue.work(
            ERROR_LOGGING,
            self.handle_error_logging,
            on_failure=self.on_error_logging_failure,
            **WORKER_CONFIG[ERROR_LOGGING],
        )
        logger.info("🚀 Upload pipeline workers registered")

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    # Stage 1

    def handle_parse_validate(self, job: QueuedJob) -> dict:
        """
        Parse and validate one uploaded file, then fan out its chunks.

        ParseError is not retried; the failure callback marks the job failed.
        The stored file is removed once no further attempt will need it.
        """
        payload = ParseValidatePayload.model_validate(job.data)
        logger.info(
            f"📄 Parse-validate started: job_id={payload.job_id}, "
            f"file={payload.filename}, attempt={job.attempt}"
        )
        remove_file = True
        try:
            with self._session() as db:
                if not mark_processing(db, payload.job_id):
                    status = get_job(db, payload.job_id).status
                    if status in TERMINAL_STATUSES:
                        logger.warning(
                            f"⚠️ Job {payload.job_id} already {status}, ignoring redelivery"
                        )
                        return {"job_id": payload.job_id, "status": status}
                    # The file is only removed after every chunk was sent
                    if not os.path.exists(payload.file_path):
                        logger.warning(
                            f"⚠️ Job {payload.job_id} already dispatched, ignoring redelivery"
                        )
                        return {"job_id": payload.job_id, "status": status}

                result = parse_validate(payload.file_path, self.settings.chunk_size)
                first_delivery = record_parse_totals(
                    db, payload.job_id, result.total_count, len(result.error_records)
                )
                if not first_delivery:
                    logger.warning(
                        f"⚠️ Totals for job {payload.job_id} already recorded, "
                        f"re-sending chunks only"
                    )

            total_chunks = len(result.valid_chunks)
            for chunk_index, rows in enumerate(result.valid_chunks):
                self.queue.send(
                    DATA_INSERT,
                    DataInsertPayload(
                        job_id=payload.job_id,
                        chunk_index=chunk_index,
                        total_chunks=total_chunks,
                        chunk_size=self.settings.chunk_size,
                        rows=rows,
                    ).model_dump(mode="json"),
                )

            # Chunk jobs are safe to re-send (chunk ledger); the error batch is not
            if result.error_records and first_delivery:
                self.queue.send(
                    ERROR_LOGGING,
                    ErrorLoggingPayload(
                        job_id=payload.job_id, error_records=result.error_records
                    ).model_dump(mode="json"),
                    priority=HIGH_PRIORITY,
                )

            if total_chunks == 0:
                with self._session() as db:
                    complete_if_done(db, payload.job_id)

            logger.info(
                f"✅ Parse-validate finished: job_id={payload.job_id}, "
                f"chunks={total_chunks}, errors={len(result.error_records)}"
            )
            return {
                "job_id": payload.job_id,
                "total_chunks": total_chunks,
                "valid_records": result.valid_count,
                "error_records": len(result.error_records),
            }
        except ParseError as e:
            logger.error(f"❌ Parse-validate failed for job {payload.job_id}: {e.message}")
            raise
        except Exception:
            remove_file = job.is_final_attempt
            raise
        finally:
            if remove_file:
                remove_upload_file(payload.file_path)

    def on_parse_validate_failure(self, job: QueuedJob, exc: BaseException) -> None:
        payload = ParseValidatePayload.model_validate(job.data)
        with self._session() as db:
            if mark_failed(db, payload.job_id, str(exc)):
                logger.error(f"❌ Upload job {payload.job_id} marked failed: {exc}")
        remove_upload_file(payload.file_path)

    # Stage 2

    def handle_data_insert(self, job: QueuedJob) -> dict:
        """
        Insert one chunk of validated rows.

        A failed insert is retried by the queue; on the final attempt the
        chunk's rows become insertion errors instead of being dropped.
        """
        payload = DataInsertPayload.model_validate(job.data)
        logger.info(
            f"📥 Inserting chunk {payload.chunk_index + 1}/{payload.total_chunks} "
            f"({len(payload.rows)} rows) for job {payload.job_id}"
        )

        with self._session() as db:
            try:
                inserted = insert_chunk(db, payload.job_id, payload.chunk_index, payload.rows)
            except InsertionError as e:
                if not job.is_final_attempt:
                    logger.warning(
                        f"⚠️ Chunk {payload.chunk_index} of job {payload.job_id} failed "
                        f"(attempt {job.attempt}), will retry: {e.message}"
                    )
                    raise
                self._downgrade_chunk(db, payload, e.message)
                inserted = False

            if inserted and self.record_cache is not None:
                self.record_cache.invalidate(InvalidationPolicy.PARTIAL)
                self.record_cache.invalidate_dashboard()

            completed = complete_if_done(db, payload.job_id)

        if completed:
            logger.info(f"🎉 Upload job {payload.job_id} completed")
        return {
            "job_id": payload.job_id,
            "chunk_index": payload.chunk_index,
            "inserted": inserted,
            "completed": completed,
        }

    def on_data_insert_failure(self, job: QueuedJob, exc: BaseException) -> None:
        payload = DataInsertPayload.model_validate(job.data)
        with self._session() as db:
            self._downgrade_chunk(db, payload, str(exc))
            if complete_if_done(db, payload.job_id):
                logger.info(f"🎉 Upload job {payload.job_id} completed")

    def _downgrade_chunk(self, db: Session, payload: DataInsertPayload, message: str) -> None:
        """Count a chunk's rows as failed and forward them to error logging."""
        if not fail_chunk(db, payload.job_id, payload.chunk_index, len(payload.rows)):
            return

        base = payload.chunk_index * payload.chunk_size
        error_records = [
            ErrorRecord(
                row_number=base + offset + 1,
                error_type=ERROR_INSERTION,
                error_message=f"Database insertion failed: {message}",
                raw_data=row,
            )
            for offset, row in enumerate(payload.rows)
        ]
        logger.error(
            f"❌ Chunk {payload.chunk_index} of job {payload.job_id} failed, "
            f"{len(error_records)} rows sent to error logging"
        )
        self.queue.send(
            ERROR_LOGGING,
            ErrorLoggingPayload(
                job_id=payload.job_id, error_records=error_records
            ).model_dump(mode="json"),
            priority=HIGH_PRIORITY,
        )

    # Stage 3

    def handle_error_logging(self, job: QueuedJob) -> dict:
        payload = ErrorLoggingPayload.model_validate(job.data)
        with self._session() as db:
            written = log_errors(db, payload.job_id, payload.error_records)
        logger.info(f"📝 Logged {written} errors for job {payload.job_id}")
        return {"job_id": payload.job_id, "logged": written}

    def on_error_logging_failure(self, job: QueuedJob, exc: BaseException) -> None:
        payload = ErrorLoggingPayload.model_validate(job.data)
        logger.error(
            f"💥 Could not log {len(payload.error_records)} errors for job "
            f"{payload.job_id}: {exc}"
        )
