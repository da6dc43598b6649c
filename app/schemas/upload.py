"""Upload request/response schemas and pipeline job payloads."""
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ErrorRecord(BaseModel):
    """A row that failed validation or insertion, before it is written as an UploadError."""

    row_number: int
    error_type: str  # validation, insertion
    error_message: str
    raw_data: dict[str, Any] = Field(default_factory=dict)


class ParseValidatePayload(BaseModel):
    """Payload of a parse-validate job: one uploaded file."""

    job_id: str
    file_path: str
    filename: str
    created_by: Optional[str] = None


class DataInsertPayload(BaseModel):
    """Payload of a data-insert job: one chunk of normalized rows."""

    job_id: str
    chunk_index: int
    total_chunks: int
    chunk_size: int
    rows: list[dict[str, Any]]


class ErrorLoggingPayload(BaseModel):
    """Payload of an error-logging job: a batch of failed rows for one upload."""

    job_id: str
    error_records: list[ErrorRecord]


class UploadResponse(BaseModel):
    """Response after a file is accepted and queued."""

    job_id: UUID
    filename: str
    message: str = "File uploaded successfully and queued for processing"


class UploadJobResponse(BaseModel):
    """Upload job status response."""

    id: UUID
    filename: str
    status: str
    progress: int
    total_records: int
    processed_records: int
    failed_records: int
    error_details: Optional[dict[str, Any]] = None
    created_by: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UploadErrorResponse(BaseModel):
    """One logged row failure."""

    id: int
    row_number: int
    error_type: str
    error_message: str
    raw_data: Optional[dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


class UploadErrorListResponse(BaseModel):
    """All logged failures for a job, ordered by row number."""

    job_id: UUID
    total: int
    errors: list[UploadErrorResponse]
