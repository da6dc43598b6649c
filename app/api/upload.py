"""Spreadsheet upload API endpoints."""
import logging
import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.api.dependencies import get_job_queue, get_record_cache
from app.config import get_settings
from app.database import get_db
from app.exceptions import JobNotFoundError
from app.schemas.upload import (
    ParseValidatePayload,
    UploadErrorListResponse,
    UploadJobResponse,
    UploadResponse,
)
from app.services.record_cache import RecordCache
from app.services.template import TEMPLATE_FILENAME, XLSX_CONTENT_TYPE, generate_template
from app.services.upload_service import (
    as_job_uuid,
    create_upload_job,
    get_job,
    get_job_errors,
    mark_failed,
)
from app.tasks.job_queue import JobQueue
from app.tasks.pipeline import enqueue_upload, remove_upload_file

router = APIRouter(prefix="/api/upload", tags=["upload"])

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = (".xlsx",)
READ_CHUNK_BYTES = 8192


def _parse_job_id(job_id: str) -> uuid.UUID:
    try:
        return as_job_uuid(job_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Job not found")


@router.post("", response_model=UploadResponse)
async def upload_spreadsheet(
    file: UploadFile = File(...),
    created_by: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    job_queue: JobQueue = Depends(get_job_queue),
    record_cache: RecordCache = Depends(get_record_cache),
):
    """
    Accept an employee spreadsheet and queue it for processing.

    This endpoint:
    1. Validates the file name and type
    2. Creates a pending upload job
    3. Streams the file to temporary storage, enforcing the size limit
    4. Sends the job to the parse-validate stage
    5. Returns the job id for status polling
    """
    settings = get_settings()
    filename = file.filename or ""
    logger.info(f"📁 Starting upload: filename={filename}, content_type={file.content_type}")

    if not filename.strip():
        raise HTTPException(status_code=400, detail="No file provided")
    if not filename.lower().endswith(ALLOWED_EXTENSIONS):
        logger.warning(f"❌ Invalid file type: {filename}")
        raise HTTPException(status_code=400, detail="Only .xlsx files are allowed")

    job = create_upload_job(db, filename, created_by)
    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    file_path = upload_dir / f"{job.id}.xlsx"

    bytes_written = 0
    with open(file_path, "wb") as buffer:
        content = await file.read(READ_CHUNK_BYTES)
        while content:
            bytes_written += len(content)
            if bytes_written > settings.max_upload_bytes:
                break
            buffer.write(content)
            content = await file.read(READ_CHUNK_BYTES)

    if bytes_written > settings.max_upload_bytes:
        logger.warning(f"❌ File too large: more than {settings.max_upload_bytes} bytes")
        remove_upload_file(str(file_path))
        mark_failed(db, job.id, "File too large")
        limit_mb = settings.max_upload_bytes // (1024 * 1024)
        raise HTTPException(status_code=413, detail=f"File too large (max {limit_mb}MB)")

    logger.info(f"✅ File saved: {bytes_written} bytes written to {file_path}")

    payload = ParseValidatePayload(
        job_id=str(job.id),
        file_path=str(file_path),
        filename=filename,
        created_by=created_by,
    )
    try:
        enqueue_upload(job_queue, payload)
    except Exception as e:
        logger.error(f"💥 Could not queue upload job {job.id}: {e}", exc_info=True)
        remove_upload_file(str(file_path))
        mark_failed(db, job.id, f"Failed to queue upload: {e}")
        raise HTTPException(status_code=500, detail="Failed to queue upload for processing")

    record_cache.invalidate_dashboard()
    logger.info(f"🎉 Upload queued: job_id={job.id}")
    return UploadResponse(job_id=job.id, filename=filename)


@router.get("/template")
def download_template():
    """Download an .xlsx template with the required headers and sample rows."""
    return Response(
        content=generate_template(),
        media_type=XLSX_CONTENT_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{TEMPLATE_FILENAME}"'},
    )


@router.get("/{job_id}", response_model=UploadJobResponse)
def get_upload_status(job_id: str, db: Session = Depends(get_db)):
    """Get upload job status and progress; clients poll this while a file is processed."""
    try:
        return get_job(db, _parse_job_id(job_id))
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")


@router.get("/{job_id}/errors", response_model=UploadErrorListResponse)
def get_upload_errors(job_id: str, db: Session = Depends(get_db)):
    """Row-level validation and insertion errors of a job, ordered by row number."""
    job_uuid = _parse_job_id(job_id)
    try:
        get_job(db, job_uuid)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")

    errors = get_job_errors(db, job_uuid)
    return UploadErrorListResponse(job_id=job_uuid, total=len(errors), errors=errors)
