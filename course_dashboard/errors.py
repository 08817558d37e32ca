"""Exception types raised by the import pipeline and its collaborators."""
from __future__ import annotations


class CourseDashboardError(RuntimeError):
    """Base class for errors surfaced to callers of the pipeline."""


class WorkbookParseError(CourseDashboardError):
    """Raised when a workbook's bytes cannot be read as a spreadsheet."""

    def __init__(self, file_label: str, message: str):
        super().__init__(f"{file_label}: {message}")
        self.file_label = file_label
        self.message = message


class StoreError(CourseDashboardError):
    """Raised by store adapters when a read or write fails."""


class ImportFailedError(CourseDashboardError):
    """Raised when a persistence failure aborts an import part-way through.

    Chunks written before the failure stay committed.
    """

    def __init__(self, message: str, upload_id: str | None = None, written_entries: int = 0):
        super().__init__(message)
        self.upload_id = upload_id
        self.written_entries = written_entries


class ChatServiceError(CourseDashboardError):
    """Raised when the completion API rejects or fails a chat request."""

    def __init__(self, message: str, status_code: int = 502, details: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


__all__ = [
    "ChatServiceError",
    "CourseDashboardError",
    "ImportFailedError",
    "StoreError",
    "WorkbookParseError",
]
