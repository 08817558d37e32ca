"""Legacy and modern course export extractors.

Both exports carry the same fields; the column headers differ only by the
era suffix, "(L)" for legacy and "(M)" for modern, and some tool versions
drop the "[LCT]" prefix and suffix altogether.
"""
from __future__ import annotations

import logging

from ..columns import ColumnResolver
from ..models import CourseRecord, SOURCE_LEGACY, SOURCE_MODERN
from ..normalizers import (
    STATUS_COMPLETED,
    is_year_grouping_row,
    normalize_duration,
    normalize_status,
    normalize_whitespace,
    normalize_year,
    parse_interaction_count,
    strip_hyperlink,
)
from ..workbook import read_first_sheet

LOGGER = logging.getLogger(__name__)

# Course exports only list finished work; a blank status means completed.
DEFAULT_COURSE_STATUS = STATUS_COMPLETED
TOTAL_ROW_PREFIX = "total:"

_ERA_SUFFIX = {SOURCE_LEGACY: "L", SOURCE_MODERN: "M"}


def _lct(label: str, suffix: str) -> list[str]:
    return [f"[LCT] {label} ({suffix})", label]


def course_schema(era: str) -> dict[str, list[str]]:
    """Header aliases per logical field for the given export era."""
    suffix = _ERA_SUFFIX[era]
    return {
        "course_name": ["Course Name", "Title"],
        "total_hours": ["Time spent", "Total hours"],
        "status": _lct("Status", suffix),
        "reporting_year": _lct("Reporting", suffix) + ["Reporting year"],
        "id_assigned": _lct("ID Assigned", suffix),
        "sme": _lct("SME", suffix),
        "legal_reviewer": _lct("Legal Reviewer", suffix),
        "vertical": _lct("Vertical", suffix),
        "course_type": _lct("Course Type", suffix),
        "authoring_tool": _lct("Authoring Tool", suffix),
        "course_style": _lct("Course Style", suffix),
        "course_length": _lct("Course Length", suffix),
        "interaction_count": _lct("Interaction Count", suffix),
    }


def is_footer_name(course_name: str) -> bool:
    return course_name.lower().startswith(TOTAL_ROW_PREFIX)


def extract_course_records(content: bytes, filename: str | None = None, *, era: str) -> list[CourseRecord]:
    """Turn a course export into CourseRecords, dropping blank and "Total:" rows."""

    rows = read_first_sheet(content, filename)
    resolver = ColumnResolver.from_rows(rows, course_schema(era))
    if rows and resolver.column("course_name") is None:
        LOGGER.warning("No course name column in %s export %s; columns=%s", era, filename, list(rows[0]))
        return []
    missing = resolver.missing()
    if rows and missing:
        LOGGER.info("%s export %s lacks columns for: %s", era, filename, ", ".join(missing))

    records: list[CourseRecord] = []
    skipped = 0
    # Some exports group courses under "2022 Courses (45)" rows instead of
    # filling the reporting column; the group year carries forward.
    group_year = ""
    for row in rows:
        course_name = normalize_whitespace(strip_hyperlink(resolver.value(row, "course_name")))
        if is_year_grouping_row(course_name):
            group_year = normalize_year(course_name)
            skipped += 1
            continue
        if not course_name or is_footer_name(course_name):
            skipped += 1
            continue

        def text(field: str) -> str:
            return normalize_whitespace(resolver.value(row, field))

        records.append(
            CourseRecord(
                course_name=course_name,
                total_hours=normalize_duration(resolver.value(row, "total_hours")),
                status=normalize_status(resolver.value(row, "status"), DEFAULT_COURSE_STATUS),
                reporting_year=normalize_year(resolver.value(row, "reporting_year")) or group_year,
                id_assigned=text("id_assigned"),
                sme=text("sme"),
                legal_reviewer=text("legal_reviewer"),
                vertical=text("vertical"),
                course_type=text("course_type"),
                authoring_tool=text("authoring_tool"),
                course_style=text("course_style"),
                course_length=text("course_length"),
                interaction_count=parse_interaction_count(resolver.value(row, "interaction_count")),
            )
        )

    LOGGER.info("Extracted %d %s course records from %s (skipped=%d)", len(records), era, filename, skipped)
    return records


def extract_legacy_courses(content: bytes, filename: str | None = None) -> list[CourseRecord]:
    return extract_course_records(content, filename, era=SOURCE_LEGACY)


def extract_modern_courses(content: bytes, filename: str | None = None) -> list[CourseRecord]:
    return extract_course_records(content, filename, era=SOURCE_MODERN)


__all__ = [
    "DEFAULT_COURSE_STATUS",
    "course_schema",
    "extract_course_records",
    "extract_legacy_courses",
    "extract_modern_courses",
    "is_footer_name",
]
