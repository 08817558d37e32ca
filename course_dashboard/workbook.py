"""Workbook reading and Excel report helpers."""
from __future__ import annotations

import logging
from io import BytesIO
from pathlib import Path
from typing import Any, Mapping

import pandas as pd

from .errors import WorkbookParseError

LOGGER = logging.getLogger(__name__)

EXCEL_SUFFIXES: tuple[str, ...] = (".xlsx", ".xlsm", ".xls")
_ZIP_MAGIC = b"PK\x03\x04"
_OLE_MAGIC = b"\xd0\xcf\x11\xe0"


def _is_csv(content: bytes, filename: str | None) -> bool:
    suffix = Path(filename).suffix.lower() if filename else ""
    if suffix == ".csv":
        return True
    if suffix in EXCEL_SUFFIXES:
        return False
    return not content.startswith((_ZIP_MAGIC, _OLE_MAGIC))


def read_first_sheet(content: bytes, filename: str | None = None) -> list[dict[str, Any]]:
    """Parse the first sheet of a workbook into header-keyed rows.

    The first row is the header. Blank cells read as ``""``; fully blank
    rows are dropped. Typed cells (numbers, datetimes, durations) are kept
    as Python objects for the normalizers to interpret.
    """
    label = filename or "<upload>"
    if not content:
        return []

    try:
        if _is_csv(content, filename):
            frame = pd.read_csv(
                BytesIO(content),
                dtype=str,
                keep_default_na=False,
                encoding="utf-8-sig",
            )
        else:
            engine = "openpyxl" if content.startswith(_ZIP_MAGIC) else None
            frame = pd.read_excel(BytesIO(content), sheet_name=0, dtype=object, engine=engine)
    except Exception as exc:
        raise WorkbookParseError(label, f"unreadable workbook ({exc})") from exc

    if frame.empty:
        LOGGER.info("Workbook %s has no data rows", label)
        return []

    frame.columns = [str(c).strip() for c in frame.columns]
    frame = frame.astype(object).where(frame.notna(), "")
    blank = frame.apply(lambda col: col.map(lambda v: isinstance(v, str) and not v.strip())).all(axis=1)
    frame = frame.loc[~blank]

    rows = frame.to_dict(orient="records")
    LOGGER.debug("Read %d rows from %s (columns=%s)", len(rows), label, list(frame.columns))
    return rows


def _sanitize_sheet_name(value: str) -> str:
    """Return a value safe for use as an Excel sheet name."""

    sanitized = "".join("_" if ch in "[]:*?/\\" else ch for ch in str(value))
    return sanitized[:31]


def make_import_report_bytes(summary: Mapping[str, Any]) -> bytes:
    """Build an Excel report for one import: summary, resolutions, ambiguities, warnings."""

    LOGGER.info("Building import report workbook (upload=%s)", summary.get("upload_id"))

    overview = pd.DataFrame(
        [
            {
                "upload_id": summary.get("upload_id") or "(preview)",
                "file_label": summary.get("file_label", ""),
                "row_count": summary.get("row_count", 0),
                "projects_created": summary.get("created", 0),
                "projects_updated": summary.get("updated", 0),
                "time_entries_written": summary.get("time_entries_written", 0),
                "unresolved": summary.get("unresolved_count", 0),
                "fallback_resolved": summary.get("fallback_count", 0),
                "source_hint_resolved": summary.get("source_hint_count", 0),
            }
        ]
    )
    resolutions = pd.DataFrame(
        sorted((summary.get("resolved_counts") or {}).items()),
        columns=["reason", "count"],
    )

    ambiguity_rows: list[dict[str, object]] = []
    for item in summary.get("ambiguity_report") or []:
        ambiguity_rows.append(
            {
                "course_name": item.get("name", ""),
                "variants": ", ".join(
                    f"{v.get('data_source')} {v.get('reporting_year') or '(no year)'}"
                    for v in item.get("variants", [])
                ),
                "time_entries": item.get("time_entry_count", 0),
                "undated_entries": item.get("undated_count", 0),
                "entry_years": ", ".join(str(y) for y in item.get("entry_years", [])),
            }
        )
    ambiguities = pd.DataFrame(
        ambiguity_rows,
        columns=["course_name", "variants", "time_entries", "undated_entries", "entry_years"],
    )
    warnings = pd.DataFrame({"Warning": list(summary.get("warnings") or [])})

    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        overview.to_excel(writer, sheet_name="Summary", index=False)
        resolutions.to_excel(writer, sheet_name="Resolutions", index=False)
        ambiguities.to_excel(writer, sheet_name=_sanitize_sheet_name("Ambiguous Courses"), index=False)
        warnings.to_excel(writer, sheet_name="Warnings", index=False)

    buffer.seek(0)
    return buffer.getvalue()


__all__ = ["EXCEL_SUFFIXES", "make_import_report_bytes", "read_first_sheet"]
