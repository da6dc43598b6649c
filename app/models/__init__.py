"""Database models."""
from app.models.employee import Employee
from app.models.upload_chunk import UploadChunk
from app.models.upload_error import UploadError
from app.models.upload_job import UploadJob

__all__ = ["Employee", "UploadChunk", "UploadError", "UploadJob"]
