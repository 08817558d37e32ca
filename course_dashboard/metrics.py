"""Read models and dashboard metrics computed from stored projects and time entries.

Nothing here is stored: every figure is derived from the current rows so
it always agrees with the time entries, whatever order imports ran in.
"""
from __future__ import annotations

import logging
from typing import Mapping

import pandas as pd

from .models import TABLE_PROJECTS, TABLE_TIME_ENTRIES
from .normalizers import is_completed_status
from .store import TABLE_COLUMNS, BaseStore

LOGGER = logging.getLogger(__name__)

PROJECT_DIMENSIONS: tuple[str, ...] = (
    "reporting_year",
    "course_type",
    "authoring_tool",
    "vertical",
    "id_assigned",
)
ENTRY_DIMENSIONS: tuple[str, ...] = ("category",)
DIMENSIONS: tuple[str, ...] = PROJECT_DIMENSIONS + ENTRY_DIMENSIONS

_YEAR_COUNT_SUFFIX = r"\s*\(\d+\)$"


def clean_reporting_year(series: pd.Series) -> pd.Series:
    """Drop a trailing ``(N)`` count such as ``"2023 (12)"`` -> ``"2023"``."""
    return series.fillna("").astype(str).str.replace(_YEAR_COUNT_SUFFIX, "", regex=True).str.strip()


def _frame(rows: list[Mapping[str, object]], table: str) -> pd.DataFrame:
    return pd.DataFrame(list(rows), columns=list(TABLE_COLUMNS[table]))


def projects_frame(store: BaseStore) -> pd.DataFrame:
    frame = _frame(store.find(TABLE_PROJECTS), TABLE_PROJECTS)
    frame["total_hours"] = pd.to_numeric(frame["total_hours"], errors="coerce").fillna(0.0)
    frame["reporting_year"] = clean_reporting_year(frame["reporting_year"])
    return frame


def time_entries_frame(store: BaseStore, projects: pd.DataFrame | None = None) -> pd.DataFrame:
    """Time entries joined to their project's name and reporting year."""

    entries = _frame(store.find(TABLE_TIME_ENTRIES), TABLE_TIME_ENTRIES)
    entries["hours"] = pd.to_numeric(entries["hours"], errors="coerce").fillna(0.0)
    entries["category"] = entries["category"].fillna("").astype(str)

    projects = projects_frame(store) if projects is None else projects
    lookup = projects[["id", "name", "reporting_year"]].rename(
        columns={"id": "project_id", "name": "project_name"}
    )
    return entries.merge(lookup, on="project_id", how="left")


def project_hours(entries: pd.DataFrame) -> pd.DataFrame:
    """Logged hours per project; unassigned entries are left out."""

    assigned = entries.loc[entries["project_id"].notna() & (entries["project_id"] != "")]
    if assigned.empty:
        return pd.DataFrame(columns=["project_id", "hours", "entry_count"])
    grouped = assigned.groupby("project_id", sort=False).agg(
        hours=("hours", "sum"),
        entry_count=("hours", "size"),
    )
    return grouped.reset_index()


def dashboard_stats(projects: pd.DataFrame, entries: pd.DataFrame) -> dict[str, object]:
    total_hours = float(entries["hours"].sum()) if not entries.empty else 0.0
    per_project = project_hours(entries)
    with_time = len(per_project)

    categories = entries["category"] if not entries.empty else pd.Series(dtype=str)
    years = projects["reporting_year"].loc[projects["reporting_year"] != ""] if not projects.empty else pd.Series(dtype=str)

    top_category = "N/A"
    if not entries.empty:
        by_category = entries.groupby("category", sort=False)["hours"].sum()
        if not by_category.empty:
            top_category = str(by_category.idxmax())

    completed = int(projects["status"].map(is_completed_status).sum()) if not projects.empty else 0
    total_courses = len(projects)

    return {
        "total_hours": round(total_hours, 2),
        "total_courses": total_courses,
        "courses_with_time": with_time,
        "avg_hours_per_course": round(total_hours / with_time, 1) if with_time else 0.0,
        "phase_count": int(categories.nunique()),
        "year_count": int(years.nunique()),
        "top_phase": top_category,
        "completed_courses": completed,
        "completion_rate": round(completed / total_courses, 3) if total_courses else 0.0,
        "unassigned_entries": int(entries["project_id"].isna().sum()) if not entries.empty else 0,
    }


def courses_per_year(projects: pd.DataFrame) -> pd.DataFrame:
    years = projects["reporting_year"].loc[projects["reporting_year"] != ""]
    if years.empty:
        return pd.DataFrame(columns=["name", "count"])
    counts = years.value_counts().rename_axis("name").reset_index(name="count")
    return counts.sort_values("name", kind="stable").reset_index(drop=True)


def avg_hours_per_category(entries: pd.DataFrame) -> pd.DataFrame:
    """Average hours per course for each phase, over the courses that logged it."""

    columns = ["name", "avg_hours", "total_hours", "course_count"]
    if entries.empty:
        return pd.DataFrame(columns=columns)

    grouped = entries.groupby("category", sort=False).agg(
        total_hours=("hours", "sum"),
        course_count=("project_id", "nunique"),
    )
    grouped["avg_hours"] = (grouped["total_hours"] / grouped["course_count"].clip(lower=1)).round(1)
    grouped["total_hours"] = grouped["total_hours"].round(1)
    result = grouped.rename_axis("name").reset_index()[columns]
    return result.sort_values("avg_hours", ascending=False, kind="stable").reset_index(drop=True)


def hours_by_dimension(projects: pd.DataFrame, entries: pd.DataFrame, dimension: str) -> pd.DataFrame:
    """Average logged hours per course grouped by a project attribute.

    ``category`` groups entries by phase instead; see
    :func:`avg_hours_per_category`.
    """

    if dimension not in DIMENSIONS:
        raise ValueError(f"Unknown dimension '{dimension}'; expected one of {', '.join(DIMENSIONS)}")
    if dimension in ENTRY_DIMENSIONS:
        return avg_hours_per_category(entries)

    columns = ["name", "avg_hours", "courses", "total_hours"]
    per_project = project_hours(entries)
    if per_project.empty or projects.empty:
        return pd.DataFrame(columns=columns)

    joined = per_project.merge(
        projects[["id", dimension]].rename(columns={"id": "project_id"}),
        on="project_id",
        how="inner",
    )
    joined[dimension] = joined[dimension].fillna("").astype(str).str.strip()
    joined = joined.loc[joined[dimension] != ""]
    if joined.empty:
        return pd.DataFrame(columns=columns)

    grouped = joined.groupby(dimension, sort=False).agg(
        total_hours=("hours", "sum"),
        courses=("project_id", "size"),
    )
    grouped["avg_hours"] = (grouped["total_hours"] / grouped["courses"]).round(1)
    grouped["total_hours"] = grouped["total_hours"].round(1)
    result = grouped.rename_axis("name").reset_index()[columns]

    if dimension == "reporting_year":
        return result.sort_values("name", kind="stable").reset_index(drop=True)
    return result.sort_values("avg_hours", ascending=False, kind="stable").reset_index(drop=True)


def avg_hours_by_year(projects: pd.DataFrame, entries: pd.DataFrame) -> pd.DataFrame:
    return hours_by_dimension(projects, entries, "reporting_year")


def metrics_payload(store: BaseStore) -> dict[str, object]:
    """Every dashboard metric in one JSON-ready mapping."""

    projects = projects_frame(store)
    entries = time_entries_frame(store, projects)
    payload: dict[str, object] = {
        "stats": dashboard_stats(projects, entries),
        "courses_per_year": courses_per_year(projects).to_dict("records"),
        "avg_hours_by_year": avg_hours_by_year(projects, entries).to_dict("records"),
        "avg_hours_per_phase": avg_hours_per_category(entries).to_dict("records"),
    }
    for dimension in ("course_type", "authoring_tool", "vertical", "id_assigned"):
        payload[f"hours_by_{dimension}"] = hours_by_dimension(projects, entries, dimension).to_dict("records")
    LOGGER.debug("Computed metrics for %d projects and %d entries", len(projects), len(entries))
    return payload


__all__ = [
    "DIMENSIONS",
    "avg_hours_by_year",
    "avg_hours_per_category",
    "clean_reporting_year",
    "courses_per_year",
    "dashboard_stats",
    "hours_by_dimension",
    "metrics_payload",
    "project_hours",
    "projects_frame",
    "time_entries_frame",
]
