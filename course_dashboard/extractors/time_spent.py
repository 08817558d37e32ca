"""Granular time-spent export extractor."""
from __future__ import annotations

import logging

from ..columns import ColumnResolver
from ..models import TimeSpentRecord
from ..normalizers import normalize_duration, normalize_whitespace, parse_entry_date
from ..workbook import read_first_sheet

LOGGER = logging.getLogger(__name__)

# The export tool has shipped the course column misspelled for years;
# rows may carry either header, so both are resolved.
TIME_SPENT_SCHEMA: dict[str, list[str]] = {
    "course_name_typo": ["Cousre name"],
    "course_name": ["Course name"],
    "category": ["Category", "Phase"],
    "date": ["Date"],
    "hours": ["Time spent", "Hours"],
    "user_name": ["User", "User name"],
}


def extract_time_spent(
    content: bytes,
    filename: str | None = None,
    *,
    serial_min: float = 30000,
    serial_max: float = 60000,
) -> list[TimeSpentRecord]:
    """Turn a time-spent export into TimeSpentRecords in row order.

    Rows without a course name are skipped. Zero-hour rows are kept; the
    importer reports them.
    """
    rows = read_first_sheet(content, filename)
    resolver = ColumnResolver.from_rows(rows, TIME_SPENT_SCHEMA)
    if rows and resolver.column("course_name_typo") is None and resolver.column("course_name") is None:
        LOGGER.warning("No course column in time-spent export %s; columns=%s", filename, list(rows[0]))
        return []

    records: list[TimeSpentRecord] = []
    for row in rows:
        course_name = normalize_whitespace(resolver.value(row, "course_name_typo")) or normalize_whitespace(
            resolver.value(row, "course_name")
        )
        if not course_name:
            continue
        records.append(
            TimeSpentRecord(
                course_name=course_name,
                category=normalize_whitespace(resolver.value(row, "category")),
                date=parse_entry_date(resolver.value(row, "date"), serial_min, serial_max),
                hours=normalize_duration(resolver.value(row, "hours")),
                user_name=normalize_whitespace(resolver.value(row, "user_name")),
            )
        )

    LOGGER.info("Extracted %d time-spent records from %s", len(records), filename)
    return records


__all__ = ["TIME_SPENT_SCHEMA", "extract_time_spent"]
