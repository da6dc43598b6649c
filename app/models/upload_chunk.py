"""Ledger of chunks already accounted for in an upload job."""
from sqlalchemy import Column, DateTime, ForeignKey, Integer, UniqueConstraint, Uuid
from sqlalchemy.sql import func

from app.database import Base


class UploadChunk(Base):
    """
    One row per chunk that was inserted or given up on.

    Written in the same transaction as the chunk's employee rows (or its
    failed-row count), so a redelivered data-insert job finds its chunk here
    and skips it.
    """

    __tablename__ = "upload_chunks"

    id = Column(Integer, primary_key=True)
    job_id = Column(Uuid(as_uuid=True), ForeignKey("upload_jobs.id"), nullable=False)
    chunk_index = Column(Integer, nullable=False)
    row_count = Column(Integer, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("job_id", "chunk_index", name="uq_upload_chunks_job_chunk"),
    )
