"""Entity reconciliation: course keying, candidate indexing and time-entry resolution.

A course is identified by (name, reporting year). The same name recurs
across years, and time-spent rows carry only the name plus a date, so
resolving a time entry means choosing among every project sharing its
name. The rules, in order:

1. one candidate: take it
2. ``exact_year``: the entry's year equals exactly one candidate's
   reporting year
3. ``source_hint``: entries dated up to the cutoff year belong to legacy
   courses, later ones to modern courses (latest year among that source)
4. ``fallback_latest``: the candidate with the latest reporting year

Every resolution records which rule fired so imports can be audited.
"""
from __future__ import annotations

import logging
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Sequence

from .models import (
    REASON_EXACT_YEAR,
    REASON_FALLBACK_LATEST,
    REASON_NO_CANDIDATE,
    REASON_SINGLE,
    REASON_SOURCE_HINT,
    SOURCE_LEGACY,
    SOURCE_MODERN,
    SOURCE_TIME_ONLY,
    CourseRecord,
    TimeSpentRecord,
)
from .normalizers import STATUS_IN_PROGRESS, entry_year, name_key

LOGGER = logging.getLogger(__name__)

KEY_SEPARATOR = "::"


def course_key(name: object, reporting_year: object) -> str:
    """Composite identity of a course: normalized name and reporting year."""
    return f"{name_key(name)}{KEY_SEPARATOR}{name_key(reporting_year)}"


@dataclass(frozen=True)
class KeyedCourse:
    key: str
    record: CourseRecord
    data_source: str


@dataclass(frozen=True)
class Candidate:
    key: str
    project_id: str
    name: str
    reporting_year: str
    data_source: str


@dataclass(frozen=True)
class Resolution:
    project_id: Optional[str]
    reason: str
    candidate: Optional[Candidate] = None


@dataclass
class MergeResult:
    courses: "OrderedDict[str, KeyedCourse]" = field(default_factory=OrderedDict)
    collisions: list[str] = field(default_factory=list)


def merge_course_records(
    legacy: Iterable[CourseRecord],
    modern: Iterable[CourseRecord],
) -> MergeResult:
    """Key legacy then modern records into one ordered mapping.

    A key present in both eras is unexpected; the modern record replaces
    the legacy one in place and the key is reported as a collision.
    Repeats within one era keep the last row.
    """
    result = MergeResult()
    legacy_keys: set[str] = set()
    for record in legacy:
        key = course_key(record.course_name, record.reporting_year)
        result.courses[key] = KeyedCourse(key, record, SOURCE_LEGACY)
        legacy_keys.add(key)

    for record in modern:
        key = course_key(record.course_name, record.reporting_year)
        if key in legacy_keys and key not in result.collisions:
            result.collisions.append(key)
        result.courses[key] = KeyedCourse(key, record, SOURCE_MODERN)

    if result.collisions:
        LOGGER.warning(
            "%d course key(s) present in both legacy and modern exports; modern kept: %s",
            len(result.collisions),
            ", ".join(result.collisions[:10]),
        )
    return result


def time_only_courses(
    time_records: Iterable[TimeSpentRecord],
    known_names: Iterable[str],
) -> list[KeyedCourse]:
    """Projects for names that only ever appear in time-spent data."""
    known = {name_key(name) for name in known_names}
    synthesized: "OrderedDict[str, KeyedCourse]" = OrderedDict()
    for record in time_records:
        norm = name_key(record.course_name)
        if not norm or norm in known:
            continue
        key = course_key(record.course_name, "")
        if key not in synthesized:
            synthesized[key] = KeyedCourse(
                key,
                CourseRecord(
                    course_name=" ".join(record.course_name.split()),
                    total_hours=0.0,
                    status=STATUS_IN_PROGRESS,
                    reporting_year="",
                ),
                SOURCE_TIME_ONLY,
            )
    return list(synthesized.values())


class CandidateIndex:
    """Projects indexed by composite key and by name alone."""

    def __init__(self) -> None:
        self._by_key: dict[str, Candidate] = {}
        self._by_name: dict[str, list[Candidate]] = {}

    @classmethod
    def from_projects(cls, projects: Iterable[Mapping[str, object]]) -> "CandidateIndex":
        index = cls()
        for row in projects:
            index.add(
                Candidate(
                    key=course_key(row.get("name"), row.get("reporting_year")),
                    project_id=str(row.get("id")),
                    name=str(row.get("name") or ""),
                    reporting_year=str(row.get("reporting_year") or ""),
                    data_source=str(row.get("data_source") or ""),
                )
            )
        return index

    def add(self, candidate: Candidate) -> None:
        previous = self._by_key.get(candidate.key)
        self._by_key[candidate.key] = candidate
        # Names may contain the key separator; never split the key back apart.
        bucket = self._by_name.setdefault(name_key(candidate.name), [])
        if previous is not None:
            for pos, existing in enumerate(bucket):
                if existing.key == candidate.key:
                    bucket[pos] = candidate
                    return
        bucket.append(candidate)

    def get(self, key: str) -> Optional[Candidate]:
        return self._by_key.get(key)

    def candidates(self, course_name: object) -> list[Candidate]:
        return list(self._by_name.get(name_key(course_name), ()))

    def has_name(self, course_name: object) -> bool:
        return bool(self._by_name.get(name_key(course_name)))

    def names(self) -> list[str]:
        return list(self._by_name)

    def __len__(self) -> int:
        return len(self._by_key)


def _year_rank(reporting_year: str) -> tuple[int, int, str]:
    text = reporting_year.strip()
    if len(text) == 4 and text.isdigit():
        return (1, int(text), "")
    return (0, 0, text)


def latest_candidate(candidates: Sequence[Candidate]) -> Candidate:
    """Candidate with the greatest reporting year; ties keep the earliest indexed."""
    best = candidates[0]
    for candidate in candidates[1:]:
        if _year_rank(candidate.reporting_year) > _year_rank(best.reporting_year):
            best = candidate
    return best


def resolve_time_record(
    course_name: object,
    entry_date: str,
    index: CandidateIndex,
    cutoff_year: int = 2025,
) -> Resolution:
    """Pick the project a time entry belongs to, and the rule that chose it."""
    candidates = index.candidates(course_name)
    if not candidates:
        return Resolution(None, REASON_NO_CANDIDATE)
    if len(candidates) == 1:
        return Resolution(candidates[0].project_id, REASON_SINGLE, candidates[0])

    year = entry_year(entry_date)
    if year is not None:
        exact = [c for c in candidates if c.reporting_year.strip() == str(year)]
        if len(exact) == 1:
            return Resolution(exact[0].project_id, REASON_EXACT_YEAR, exact[0])

        preferred = SOURCE_LEGACY if year <= cutoff_year else SOURCE_MODERN
        hinted = [c for c in candidates if c.data_source == preferred]
        if hinted:
            chosen = latest_candidate(hinted)
            return Resolution(chosen.project_id, REASON_SOURCE_HINT, chosen)

    chosen = latest_candidate(candidates)
    LOGGER.warning(
        "Fallback resolution for '%s' (date=%r): %d candidates, chose %s",
        course_name,
        entry_date,
        len(candidates),
        chosen.key,
    )
    return Resolution(chosen.project_id, REASON_FALLBACK_LATEST, chosen)


def resolution_counts(resolutions: Iterable[Resolution]) -> dict[str, int]:
    counts = Counter(r.reason for r in resolutions)
    return dict(counts)


def ambiguity_report(
    index: CandidateIndex,
    time_records: Sequence[TimeSpentRecord],
) -> list[dict[str, object]]:
    """Names shared by several (source, year) variants, with the time data pointing at them.

    Advisory only; nothing here changes how entries resolve.
    """
    by_name: dict[str, list[TimeSpentRecord]] = {}
    for record in time_records:
        by_name.setdefault(name_key(record.course_name), []).append(record)

    report: list[dict[str, object]] = []
    for norm in index.names():
        candidates = index.candidates(norm)
        variants: list[tuple[str, str]] = []
        for candidate in candidates:
            variant = (candidate.data_source, candidate.reporting_year)
            if variant not in variants:
                variants.append(variant)
        if len(variants) < 2:
            continue

        records = by_name.get(norm, [])
        years = sorted({y for y in (entry_year(r.date) for r in records) if y is not None})
        report.append(
            {
                "name": candidates[0].name,
                "variants": [{"data_source": s, "reporting_year": y} for s, y in variants],
                "time_entry_count": len(records),
                "undated_count": sum(1 for r in records if entry_year(r.date) is None),
                "entry_years": years,
            }
        )
    return report


__all__ = [
    "Candidate",
    "CandidateIndex",
    "KeyedCourse",
    "MergeResult",
    "Resolution",
    "ambiguity_report",
    "course_key",
    "latest_candidate",
    "merge_course_records",
    "resolution_counts",
    "resolve_time_record",
    "time_only_courses",
]
