"""Upload job model for tracking spreadsheet import progress."""
import uuid

from sqlalchemy import JSON, Column, DateTime, Integer, String, Uuid
from sqlalchemy.sql import func

from app.database import Base

JOB_PENDING = "pending"
JOB_PROCESSING = "processing"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"

TERMINAL_STATUSES = (JOB_COMPLETED, JOB_FAILED)


class UploadJob(Base):
    """Model for tracking spreadsheet upload and processing jobs."""

    __tablename__ = "upload_jobs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    filename = Column(String(255), nullable=False)
    status = Column(
        String(20), nullable=False, default=JOB_PENDING
    )  # pending, processing, completed, failed
    total_records = Column(Integer, default=0, nullable=False)
    processed_records = Column(Integer, default=0, nullable=False)
    failed_records = Column(Integer, default=0, nullable=False)
    error_details = Column(JSON, nullable=True)
    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    completed_at = Column(DateTime, nullable=True)

    @property
    def progress(self) -> int:
        """Percentage of rows accounted for (inserted or failed)."""
        if not self.total_records:
            return 100 if self.status == JOB_COMPLETED else 0
        done = (self.processed_records or 0) + (self.failed_records or 0)
        return min(100, round(done * 100 / self.total_records))
