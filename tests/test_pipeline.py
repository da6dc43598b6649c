"""Tests for the three-stage upload pipeline."""
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.database import Base
from app.exceptions import InsertionError
from app.models.employee import Employee
from app.models.upload_error import UploadError
from app.models.upload_job import UploadJob
from app.schemas.upload import DataInsertPayload, ParseValidatePayload
from app.services.record_cache import DASHBOARD_STATS_KEY, DATASET_KEY
from app.services.upload_service import complete_if_done, create_upload_job
from app.services.upload_service import insert_chunk as real_insert
from app.tasks.job_queue import QueuedJob
from app.tasks.pipeline import (
    DATA_INSERT,
    ERROR_LOGGING,
    PARSE_VALIDATE,
    PipelineOrchestrator,
    enqueue_upload,
)

VALID = ["John", "Doe", "Male", "USA", 25, "2024-01-15"]


@pytest.fixture
def orchestrator(job_queue, test_db, record_cache, settings):
    pipeline = PipelineOrchestrator(job_queue, test_db, record_cache=record_cache, settings=settings)
    pipeline.start()
    return pipeline


def submit(db_session, job_queue, path):
    job = create_upload_job(db_session, os.path.basename(path), created_by="tester")
    enqueue_upload(
        job_queue,
        ParseValidatePayload(
            job_id=str(job.id), file_path=path, filename=os.path.basename(path), created_by="tester"
        ),
    )
    return job.id


def reload_job(db_session, job_id):
    db_session.expire_all()
    return db_session.query(UploadJob).filter(UploadJob.id == job_id).one()


def test_start_registers_every_topic(orchestrator, job_queue):
    assert set(job_queue.handlers) == {PARSE_VALIDATE, DATA_INSERT, ERROR_LOGGING}


def test_upload_with_invalid_age(orchestrator, job_queue, db_session, make_workbook):
    """Header + 3 rows where the second data row has age=150."""
    path = make_workbook([VALID, ["Jane", "Smith", "Female", "Canada", 150, "2024-01-16"], VALID])
    job_id = submit(db_session, job_queue, path)

    job_queue.drain()

    job = reload_job(db_session, job_id)
    assert job.status == "completed"
    assert job.total_records == 3
    assert job.processed_records == 2
    assert job.failed_records == 1
    assert job.completed_at is not None
    assert job.progress == 100

    assert db_session.query(Employee).count() == 2
    errors = db_session.query(UploadError).filter(UploadError.job_id == job_id).all()
    assert len(errors) == 1
    assert errors[0].error_type == "validation"
    assert errors[0].row_number == 3
    assert errors[0].raw_data["age"] == 150

    assert not os.path.exists(path)


def test_error_logging_is_sent_with_high_priority(orchestrator, job_queue, db_session, make_workbook):
    path = make_workbook([VALID, ["Jane", "Smith", "Female", "Canada", 150, "2024-01-16"]])
    submit(db_session, job_queue, path)

    job_queue.deliver(job_queue.take(PARSE_VALIDATE)[0])

    [error_job] = job_queue.sent_to(ERROR_LOGGING)
    assert error_job.priority == 0
    [insert_job] = job_queue.sent_to(DATA_INSERT)
    assert insert_job.priority is None
    assert insert_job.payload["chunk_index"] == 0
    assert insert_job.payload["total_chunks"] == 1


def test_missing_country_header_fails_job(orchestrator, job_queue, db_session, make_workbook):
    path = make_workbook(
        [["John", "Doe", "Male", 25, "2024-01-15"]],
        headers=["firstname", "lastname", "gender", "age", "date"],
    )
    job_id = submit(db_session, job_queue, path)

    job_queue.drain()

    job = reload_job(db_session, job_id)
    assert job.status == "failed"
    assert "country" in job.error_details["error"]
    assert db_session.query(Employee).count() == 0
    assert job_queue.sent_to(DATA_INSERT) == []
    assert not os.path.exists(path)

    # ParseError is not retried
    [(failed_job, exc)] = job_queue.failed
    assert failed_job.topic == PARSE_VALIDATE


def test_two_chunks_complete_exactly_once(orchestrator, job_queue, db_session, make_workbook):
    """Two chunks of 100 rows: processed ends at 200 and the job completes once."""
    path = make_workbook([VALID] * 200)
    job_id = submit(db_session, job_queue, path)

    job_queue.deliver(job_queue.take(PARSE_VALIDATE)[0])
    chunk_jobs = job_queue.take(DATA_INSERT)
    assert len(chunk_jobs) == 2
    assert reload_job(db_session, job_id).status == "processing"

    # Out of order
    results = [job_queue.deliver(chunk) for chunk in reversed(chunk_jobs)]

    job = reload_job(db_session, job_id)
    assert job.processed_records == 200
    assert job.total_records == 200
    assert job.status == "completed"
    assert [result["completed"] for result in results] == [False, True]
    assert db_session.query(Employee).count() == 200

    # A late duplicate completion check changes nothing
    assert complete_if_done(db_session, job_id) is False


def test_redelivered_chunk_is_not_inserted_twice(orchestrator, job_queue, db_session, make_workbook):
    path = make_workbook([VALID] * 3)
    job_id = submit(db_session, job_queue, path)
    job_queue.deliver(job_queue.take(PARSE_VALIDATE)[0])
    [chunk] = job_queue.take(DATA_INSERT)

    first = job_queue.deliver(chunk)
    second = job_queue.deliver(chunk)

    assert first["inserted"] is True
    assert second["inserted"] is False
    assert db_session.query(Employee).count() == 3
    assert reload_job(db_session, job_id).processed_records == 3


def test_failing_chunk_becomes_insertion_errors(orchestrator, job_queue, db_session, make_workbook):
    """After the last retry the chunk's rows are logged, counted as failed and the job completes."""
    path = make_workbook([VALID] * 3)
    job_id = submit(db_session, job_queue, path)
    job_queue.deliver(job_queue.take(PARSE_VALIDATE)[0])
    [chunk] = job_queue.take(DATA_INSERT)
    chunk.payload["rows"][1].pop("age")

    job_queue.deliver(chunk)

    job = reload_job(db_session, job_id)
    assert job.failed_records == 3
    assert job.processed_records == 0
    assert job.status == "completed"
    assert db_session.query(Employee).count() == 0

    [error_job] = job_queue.take(ERROR_LOGGING)
    assert error_job.priority == 0
    job_queue.deliver(error_job)

    errors = db_session.query(UploadError).order_by(UploadError.row_number).all()
    assert [error.row_number for error in errors] == [1, 2, 3]
    assert {error.error_type for error in errors} == {"insertion"}
    assert errors[0].error_message.startswith("Database insertion failed")


def test_chunk_insert_is_retried_before_giving_up(orchestrator, job_queue, db_session, make_workbook):
    path = make_workbook([VALID] * 2)
    job_id = submit(db_session, job_queue, path)
    job_queue.deliver(job_queue.take(PARSE_VALIDATE)[0])
    [chunk] = job_queue.take(DATA_INSERT)

    calls = []

    def flaky_insert(db, *args):
        calls.append(1)
        if len(calls) == 1:
            raise InsertionError("deadlock detected", job_id=str(job_id), chunk_index=0)
        return real_insert(db, *args)

    with patch("app.tasks.pipeline.insert_chunk", side_effect=flaky_insert):
        job_queue.deliver(chunk)

    assert len(calls) == 2
    job = reload_job(db_session, job_id)
    assert job.processed_records == 2
    assert job.failed_records == 0
    assert job.status == "completed"


def test_all_invalid_rows_complete_at_parse(orchestrator, job_queue, db_session, make_workbook):
    path = make_workbook([["John", "Doe", "Male", "USA", 150, "2024-01-15"]])
    job_id = submit(db_session, job_queue, path)

    job_queue.deliver(job_queue.take(PARSE_VALIDATE)[0])

    job = reload_job(db_session, job_id)
    assert job.status == "completed"
    assert job.total_records == 1
    assert job.failed_records == 1
    assert job_queue.sent_to(DATA_INSERT) == []


def test_inserted_chunk_invalidates_cache(orchestrator, job_queue, db_session, make_workbook, redis_client):
    redis_client.zadd(DATASET_KEY, {"{}": 1})
    redis_client.set(DASHBOARD_STATS_KEY, "{}")
    path = make_workbook([VALID])
    submit(db_session, job_queue, path)

    job_queue.drain()

    assert not redis_client.exists(DATASET_KEY)
    assert not redis_client.exists(DASHBOARD_STATS_KEY)


def test_redelivered_parse_after_completion_is_ignored(orchestrator, job_queue, db_session, make_workbook):
    path = make_workbook([VALID])
    job_id = submit(db_session, job_queue, path)
    [parse_job] = job_queue.take(PARSE_VALIDATE)
    job_queue.deliver(parse_job)
    job_queue.drain()

    result = job_queue.deliver(parse_job)

    assert result == {"job_id": str(job_id), "status": "completed"}
    assert len(job_queue.sent_to(DATA_INSERT)) == 1


def test_status_never_reverses(orchestrator, job_queue, db_session, make_workbook):
    path = make_workbook([VALID] * 5)
    job_id = submit(db_session, job_queue, path)
    observed = [reload_job(db_session, job_id).status]

    job_queue.deliver(job_queue.take(PARSE_VALIDATE)[0])
    observed.append(reload_job(db_session, job_id).status)
    job_queue.drain()
    observed.append(reload_job(db_session, job_id).status)

    assert observed == ["pending", "processing", "completed"]


def test_data_insert_payload_round_trips_through_json(orchestrator, job_queue, db_session, make_workbook):
    path = make_workbook([VALID])
    submit(db_session, job_queue, path)
    job_queue.deliver(job_queue.take(PARSE_VALIDATE)[0])

    [chunk] = job_queue.take(DATA_INSERT)
    payload = DataInsertPayload.model_validate(chunk.payload)

    assert payload.rows[0]["date"] == "2024-01-15"
    assert payload.chunk_size == 100


def test_redelivered_parse_keeps_failed_chunk_counts(orchestrator, job_queue, db_session, make_workbook):
    """A parse job delivered again mid-job re-sends chunks without resetting counters."""
    invalid = ["Jane", "Smith", "Female", "Canada", 150, "2024-01-16"]
    path = make_workbook([VALID] * 200 + [invalid])
    job_id = submit(db_session, job_queue, path)
    [parse_job] = job_queue.take(PARSE_VALIDATE)

    # Worker lost after sending the chunks but before removing the file
    with patch("app.tasks.pipeline.remove_upload_file"):
        job_queue.deliver(parse_job)
    first_chunk, _ = job_queue.take(DATA_INSERT)
    first_chunk.payload["rows"][0].pop("age")
    job_queue.deliver(first_chunk)
    assert reload_job(db_session, job_id).failed_records == 101

    job_queue.deliver(parse_job)
    job_queue.drain()

    job = reload_job(db_session, job_id)
    assert job.status == "completed"
    assert job.total_records == 201
    assert job.processed_records == 100
    assert job.failed_records == 101
    assert db_session.query(Employee).count() == 100

    validation_errors = (
        db_session.query(UploadError)
        .filter(UploadError.job_id == job_id, UploadError.error_type == "validation")
        .all()
    )
    assert [error.row_number for error in validation_errors] == [202]
    assert not os.path.exists(path)


def test_redelivered_parse_after_dispatch_leaves_job_running(orchestrator, job_queue, db_session, make_workbook):
    path = make_workbook([VALID] * 3)
    job_id = submit(db_session, job_queue, path)
    [parse_job] = job_queue.take(PARSE_VALIDATE)
    job_queue.deliver(parse_job)
    assert not os.path.exists(path)

    result = job_queue.deliver(parse_job)

    assert result == {"job_id": str(job_id), "status": "processing"}
    assert job_queue.failed == []
    job_queue.drain()
    assert reload_job(db_session, job_id).status == "completed"
    assert len(job_queue.sent_to(DATA_INSERT)) == 1


def test_concurrent_chunk_completions(job_queue, settings, make_workbook, tmp_path):
    """Two chunks of 100 rows finishing at the same time: 200 processed, one completion."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'jobs.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    pipeline = PipelineOrchestrator(job_queue, session_factory, settings=settings)
    pipeline.start()

    db = session_factory()
    try:
        path = make_workbook([VALID] * 200)
        job_id = submit(db, job_queue, path)
        job_queue.deliver(job_queue.take(PARSE_VALIDATE)[0])
        chunk_jobs = job_queue.take(DATA_INSERT)
        assert len(chunk_jobs) == 2

        barrier = threading.Barrier(len(chunk_jobs))

        def run_chunk(sent):
            barrier.wait()
            return pipeline.handle_data_insert(
                QueuedJob(id=sent.id, topic=sent.topic, data=sent.payload, retry_limit=3)
            )

        with ThreadPoolExecutor(max_workers=len(chunk_jobs)) as pool:
            results = list(pool.map(run_chunk, chunk_jobs))

        job = reload_job(db, job_id)
        assert job.processed_records == 200
        assert job.status == "completed"
        assert sorted(result["completed"] for result in results) == [False, True]
        assert db.query(Employee).count() == 200
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
