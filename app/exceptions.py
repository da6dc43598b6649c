"""Exceptions raised by the upload pipeline and the record cache."""


class PipelineError(Exception):
    """Base exception for upload pipeline errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ParseError(PipelineError):
    """Spreadsheet cannot be used at all: unreadable, empty, or missing headers."""

    def __init__(self, message: str, missing_headers: list[str] | None = None):
        super().__init__(message)
        self.missing_headers = missing_headers or []


class InsertionError(PipelineError):
    """A chunk's batch write into the employee table failed."""

    def __init__(self, message: str, job_id: str, chunk_index: int):
        super().__init__(message)
        self.job_id = job_id
        self.chunk_index = chunk_index


class JobNotFoundError(PipelineError):
    """Raised when an upload job id does not exist."""

    pass
