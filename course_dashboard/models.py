"""Typed records flowing through the import pipeline and persisted rows."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Optional


# Persisted table names
TABLE_PROJECTS = "projects"
TABLE_TIME_ENTRIES = "time_entries"
TABLE_UPLOAD_HISTORY = "upload_history"

SOURCE_LEGACY = "legacy"
SOURCE_MODERN = "modern"
SOURCE_TIME_ONLY = "time_only"
DATA_SOURCES: tuple[str, ...] = (SOURCE_LEGACY, SOURCE_MODERN, SOURCE_TIME_ONLY)

UPLOAD_COMPLETED = "completed"
UPLOAD_FAILED = "failed"

# Resolution reasons recorded for every imported time entry
REASON_NO_CANDIDATE = "no_candidate"
REASON_SINGLE = "single"
REASON_EXACT_YEAR = "exact_year"
REASON_SOURCE_HINT = "source_hint"
REASON_FALLBACK_LATEST = "fallback_latest"
RESOLUTION_REASONS: tuple[str, ...] = (
    REASON_NO_CANDIDATE,
    REASON_SINGLE,
    REASON_EXACT_YEAR,
    REASON_SOURCE_HINT,
    REASON_FALLBACK_LATEST,
)

# Course metadata copied verbatim onto the project row
COURSE_METADATA_FIELDS: tuple[str, ...] = (
    "id_assigned",
    "sme",
    "legal_reviewer",
    "vertical",
    "course_type",
    "authoring_tool",
    "course_style",
    "course_length",
    "interaction_count",
)


@dataclass(frozen=True)
class CourseRecord:
    """One course row from a legacy or modern course export."""

    course_name: str
    total_hours: float
    status: str
    reporting_year: str
    id_assigned: str = ""
    sme: str = ""
    legal_reviewer: str = ""
    vertical: str = ""
    course_type: str = ""
    authoring_tool: str = ""
    course_style: str = ""
    course_length: str = ""
    interaction_count: Optional[int] = None

    def metadata(self) -> dict[str, object]:
        return {name: getattr(self, name) for name in COURSE_METADATA_FIELDS}


@dataclass(frozen=True)
class TimeSpentRecord:
    """One logged-hours row from the granular time-spent export."""

    course_name: str
    category: str
    date: str
    hours: float
    user_name: str = ""


@dataclass(frozen=True)
class HierarchicalEntry:
    """A leaf time entry from a nested (Wrike-style) export."""

    project: str
    phase: str
    hours: float
    raw_task_name: str = ""
    raw_time_spent: str = ""

    def to_time_spent(self) -> TimeSpentRecord:
        return TimeSpentRecord(
            course_name=self.project,
            category=self.phase,
            date="",
            hours=self.hours,
            user_name="",
        )


@dataclass
class Project:
    id: str
    name: str
    status: str
    total_hours: float
    data_source: str
    reporting_year: str
    id_assigned: str = ""
    sme: str = ""
    legal_reviewer: str = ""
    vertical: str = ""
    course_type: str = ""
    authoring_tool: str = ""
    course_style: str = ""
    course_length: str = ""
    interaction_count: Optional[int] = None
    created_at: object = None
    updated_at: object = None

    def to_row(self) -> dict[str, object]:
        return asdict(self)


@dataclass
class TimeEntry:
    id: str
    project_id: Optional[str]
    category: str
    hours: float
    entry_date: Optional[str]
    user_name: str
    upload_id: str
    resolution: str = REASON_NO_CANDIDATE
    created_at: object = None

    def to_row(self) -> dict[str, object]:
        return asdict(self)


@dataclass
class UploadAudit:
    id: str
    file_label: str
    row_count: int
    status: str = UPLOAD_COMPLETED
    created_at: object = None

    def to_row(self) -> dict[str, object]:
        return asdict(self)


@dataclass
class ExtractedBatch:
    """Records extracted from one upload, plus file-level problems."""

    legacy: list[CourseRecord] = field(default_factory=list)
    modern: list[CourseRecord] = field(default_factory=list)
    time_records: list[TimeSpentRecord] = field(default_factory=list)
    # Project names read from nested exports; these always get a project.
    project_names: list[str] = field(default_factory=list)
    file_names: list[str] = field(default_factory=list)
    file_errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.legacy) + len(self.modern) + len(self.time_records)


__all__ = [
    "COURSE_METADATA_FIELDS",
    "CourseRecord",
    "DATA_SOURCES",
    "ExtractedBatch",
    "HierarchicalEntry",
    "Project",
    "RESOLUTION_REASONS",
    "TimeEntry",
    "TimeSpentRecord",
    "UploadAudit",
]
