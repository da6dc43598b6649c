"""Upload error model: one failed row of an upload job."""
from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.sql import func

from app.database import Base

ERROR_VALIDATION = "validation"
ERROR_INSERTION = "insertion"


class UploadError(Base):
    """Append-only record of a row that failed validation or insertion."""

    __tablename__ = "upload_errors"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Uuid(as_uuid=True), ForeignKey("upload_jobs.id"), nullable=False, index=True)
    row_number = Column(Integer, nullable=False)
    error_type = Column(String(50), nullable=False)  # validation, insertion
    error_message = Column(Text, nullable=False)
    raw_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
