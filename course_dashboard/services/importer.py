"""Import coordination: extraction, reconciliation, upsert and audit."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Callable, Iterable, Optional, Sequence

from ..config import AppConfig
from ..errors import ImportFailedError, StoreError, WorkbookParseError
from ..extractors.course import extract_legacy_courses, extract_modern_courses
from ..extractors.hierarchical import extract_hierarchical
from ..extractors.time_spent import extract_time_spent
from ..models import (
    REASON_FALLBACK_LATEST,
    REASON_NO_CANDIDATE,
    REASON_SOURCE_HINT,
    TABLE_PROJECTS,
    TABLE_TIME_ENTRIES,
    TABLE_UPLOAD_HISTORY,
    UPLOAD_COMPLETED,
    UPLOAD_FAILED,
    CourseRecord,
    ExtractedBatch,
    Project,
    TimeEntry,
    TimeSpentRecord,
    UploadAudit,
)
from ..normalizers import name_key
from ..reconciler import (
    Candidate,
    CandidateIndex,
    KeyedCourse,
    Resolution,
    ambiguity_report,
    merge_course_records,
    resolution_counts,
    resolve_time_record,
    time_only_courses,
)
from ..store import BaseStore, new_id


LOGGER = logging.getLogger(__name__)

# (filename, bytes) as received from an upload or read from disk
SourceFile = tuple[str, bytes]

PREVIEW_ID_PREFIX = "preview:"


@dataclass
class ImportSummary:
    """Outcome of one import (or preview) as reported to the caller."""

    created: int = 0
    updated: int = 0
    resolved_counts: dict[str, int] = field(default_factory=dict)
    unresolved_count: int = 0
    fallback_count: int = 0
    source_hint_count: int = 0
    ambiguity_report: list[dict[str, object]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    upload_id: Optional[str] = None
    time_entries_written: int = 0
    row_count: int = 0
    file_label: str = ""
    preview: bool = False

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass
class _Plan:
    index: CandidateIndex
    creates: list[KeyedCourse]
    updates: list[tuple[Candidate, KeyedCourse]]
    collisions: list[str]


def _chunks(items: Sequence, size: int) -> Iterable[Sequence]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _project_fields(keyed: KeyedCourse) -> dict[str, object]:
    record = keyed.record
    fields: dict[str, object] = {
        "name": record.course_name,
        "status": record.status,
        "total_hours": record.total_hours,
        "data_source": keyed.data_source,
        "reporting_year": record.reporting_year,
    }
    fields.update(record.metadata())
    return fields


def _candidate(keyed: KeyedCourse, project_id: str) -> Candidate:
    return Candidate(
        key=keyed.key,
        project_id=project_id,
        name=keyed.record.course_name,
        reporting_year=keyed.record.reporting_year,
        data_source=keyed.data_source,
    )


class ImportCoordinator:
    """Run uploads through extraction and reconciliation into a store.

    One coordinator may serve many imports, but imports against the same
    store are expected to run one at a time.
    """

    def __init__(self, store: BaseStore, config: AppConfig | None = None):
        self._store = store
        self._config = config or AppConfig()

    @property
    def store(self) -> BaseStore:
        return self._store

    # Extraction --------------------------------------------------------

    def extract_sources(
        self,
        legacy: SourceFile | None = None,
        modern: SourceFile | None = None,
        time_spent: SourceFile | None = None,
        hierarchical: SourceFile | None = None,
    ) -> ExtractedBatch:
        """Parse each supplied file; an unreadable file is recorded, not raised."""

        cfg = self._config
        batch = ExtractedBatch()

        def run(source: SourceFile | None, extract: Callable[[bytes, str], list], sink: list) -> None:
            if source is None:
                return
            filename, content = source
            batch.file_names.append(filename)
            try:
                sink.extend(extract(content, filename))
            except WorkbookParseError as exc:
                LOGGER.warning("Skipping unreadable file %s: %s", filename, exc.message)
                batch.file_errors.append(str(exc))

        run(legacy, extract_legacy_courses, batch.legacy)
        run(modern, extract_modern_courses, batch.modern)
        run(
            time_spent,
            lambda content, filename: extract_time_spent(
                content,
                filename,
                serial_min=cfg.excel_serial_date_min,
                serial_max=cfg.excel_serial_date_max,
            ),
            batch.time_records,
        )

        def hierarchical_records(content: bytes, filename: str) -> list[TimeSpentRecord]:
            result = extract_hierarchical(content, filename)
            batch.warnings.extend(result.warnings(filename))
            records = result.time_records()
            batch.project_names.extend(r.course_name for r in records)
            return records

        run(hierarchical, hierarchical_records, batch.time_records)
        return batch

    def import_extracted(self, batch: ExtractedBatch) -> ImportSummary:
        return self.import_batch(
            batch.legacy,
            batch.modern,
            batch.time_records,
            project_names=batch.project_names,
            file_names=batch.file_names,
            extra_warnings=[*batch.file_errors, *batch.warnings],
        )

    def preview_extracted(self, batch: ExtractedBatch) -> ImportSummary:
        return self.preview_batch(
            batch.legacy,
            batch.modern,
            batch.time_records,
            project_names=batch.project_names,
            file_names=batch.file_names,
            extra_warnings=[*batch.file_errors, *batch.warnings],
        )

    # Reconciliation ----------------------------------------------------

    def _plan(
        self,
        legacy: Sequence[CourseRecord],
        modern: Sequence[CourseRecord],
        time_records: Sequence[TimeSpentRecord],
        project_names: Sequence[str] = (),
    ) -> _Plan:
        index = CandidateIndex.from_projects(self._store.find(TABLE_PROJECTS))
        merged = merge_course_records(legacy, modern)
        courses = list(merged.courses.values())

        # Nested exports name their projects outright, so those always get
        # one; flat time-spent rows only when synthesis is switched on.
        synthesize = list(time_records)
        if not self._config.synthesize_time_only:
            named = {name_key(name) for name in project_names}
            synthesize = [r for r in time_records if name_key(r.course_name) in named]
        if synthesize:
            known = [*index.names(), *(c.record.course_name for c in courses)]
            courses.extend(time_only_courses(synthesize, known))

        creates: list[KeyedCourse] = []
        updates: list[tuple[Candidate, KeyedCourse]] = []
        for keyed in courses:
            existing = index.get(keyed.key)
            if existing is None:
                creates.append(keyed)
            else:
                updates.append((existing, keyed))
        return _Plan(index, creates, updates, merged.collisions)

    def _resolve(self, time_records: Sequence[TimeSpentRecord], index: CandidateIndex) -> list[Resolution]:
        cutoff = self._config.source_hint_cutoff_year
        return [resolve_time_record(r.course_name, r.date, index, cutoff) for r in time_records]

    def _summarize(
        self,
        plan: _Plan,
        time_records: Sequence[TimeSpentRecord],
        resolutions: Sequence[Resolution],
        *,
        row_count: int,
        file_label: str,
        extra_warnings: Sequence[str],
    ) -> ImportSummary:
        counts = resolution_counts(resolutions)
        summary = ImportSummary(
            created=len(plan.creates),
            updated=len(plan.updates),
            resolved_counts=counts,
            unresolved_count=counts.get(REASON_NO_CANDIDATE, 0),
            fallback_count=counts.get(REASON_FALLBACK_LATEST, 0),
            source_hint_count=counts.get(REASON_SOURCE_HINT, 0),
            ambiguity_report=ambiguity_report(plan.index, time_records),
            row_count=row_count,
            file_label=file_label,
        )
        summary.warnings = [*extra_warnings, *self._warnings(plan, time_records, summary)]
        return summary

    @staticmethod
    def _warnings(plan: _Plan, time_records: Sequence[TimeSpentRecord], summary: ImportSummary) -> list[str]:
        warnings: list[str] = []
        if plan.collisions:
            warnings.append(
                f"{len(plan.collisions)} course(s) appear in both the legacy and modern exports "
                "for the same reporting year; the modern rows were kept"
            )
        zero_hours = sum(1 for r in time_records if r.hours == 0)
        if zero_hours:
            warnings.append(f"{zero_hours} time entries with zero hours")
        if time_records:
            logged = {name_key(r.course_name) for r in time_records}
            batch_courses = [*plan.creates, *(keyed for _, keyed in plan.updates)]
            idle = sum(1 for keyed in batch_courses if name_key(keyed.record.course_name) not in logged)
            if idle:
                warnings.append(f"{idle} courses with no time entries")
        if summary.unresolved_count:
            warnings.append(f"{summary.unresolved_count} time entries matched no course and were saved unassigned")
        if summary.fallback_count:
            warnings.append(
                f"{summary.fallback_count} time entries matched several courses and were assigned "
                "to the latest reporting year"
            )
        return warnings

    # Public operations -------------------------------------------------

    def preview_batch(
        self,
        legacy: Sequence[CourseRecord] | None = None,
        modern: Sequence[CourseRecord] | None = None,
        time_records: Sequence[TimeSpentRecord] | None = None,
        *,
        file_names: Sequence[str] | None = None,
        project_names: Sequence[str] = (),
        extra_warnings: Sequence[str] = (),
    ) -> ImportSummary:
        """Reconcile against the current store without writing anything."""

        legacy, modern, time_records = list(legacy or []), list(modern or []), list(time_records or [])
        row_count = len(legacy) + len(modern) + len(time_records)
        file_label = ", ".join(file_names or [])
        if row_count == 0:
            return ImportSummary(file_label=file_label, warnings=list(extra_warnings), preview=True)

        try:
            plan = self._plan(legacy, modern, time_records, project_names)
        except StoreError as exc:
            raise ImportFailedError(f"Could not read existing projects: {exc}") from exc

        for existing, keyed in plan.updates:
            plan.index.add(_candidate(keyed, existing.project_id))
        for keyed in plan.creates:
            plan.index.add(_candidate(keyed, PREVIEW_ID_PREFIX + keyed.key))

        resolutions = self._resolve(time_records, plan.index)
        summary = self._summarize(
            plan,
            time_records,
            resolutions,
            row_count=row_count,
            file_label=file_label,
            extra_warnings=extra_warnings,
        )
        summary.preview = True
        LOGGER.info(
            "Import preview: %d rows, %d to create, %d to update, resolutions=%s",
            row_count,
            summary.created,
            summary.updated,
            summary.resolved_counts,
            extra={"event": "import_preview", "file_label": file_label},
        )
        return summary

    def import_batch(
        self,
        legacy: Sequence[CourseRecord] | None = None,
        modern: Sequence[CourseRecord] | None = None,
        time_records: Sequence[TimeSpentRecord] | None = None,
        *,
        file_names: Sequence[str] | None = None,
        project_names: Sequence[str] = (),
        extra_warnings: Sequence[str] = (),
    ) -> ImportSummary:
        """Upsert projects, then resolve and append time entries, then audit.

        Every project write completes before any time entry is resolved.
        Time entries go out in chunks; a store failure stops the remaining
        chunks, leaves the written ones in place, records a failed audit row
        and raises :class:`ImportFailedError`.
        """

        legacy, modern, time_records = list(legacy or []), list(modern or []), list(time_records or [])
        row_count = len(legacy) + len(modern) + len(time_records)
        file_label = ", ".join(file_names or [])
        if row_count == 0:
            LOGGER.info("Nothing to import from %s", file_label or "<no files>")
            return ImportSummary(file_label=file_label, warnings=list(extra_warnings))

        upload_id = new_id()
        chunk_size = self._config.import_chunk_size
        written = 0
        try:
            plan = self._plan(legacy, modern, time_records, project_names)

            for existing, keyed in plan.updates:
                self._store.update(TABLE_PROJECTS, existing.project_id, _project_fields(keyed))
                plan.index.add(_candidate(keyed, existing.project_id))

            for chunk in _chunks(plan.creates, chunk_size):
                rows = [Project(id=new_id(), **_project_fields(keyed)).to_row() for keyed in chunk]
                stored = self._store.insert(TABLE_PROJECTS, rows)
                for keyed, row in zip(chunk, stored):
                    plan.index.add(_candidate(keyed, str(row["id"])))

            resolutions = self._resolve(time_records, plan.index)
            entries = [
                TimeEntry(
                    id=new_id(),
                    project_id=resolution.project_id,
                    category=record.category,
                    hours=record.hours,
                    entry_date=record.date or None,
                    user_name=record.user_name,
                    upload_id=upload_id,
                    resolution=resolution.reason,
                ).to_row()
                for record, resolution in zip(time_records, resolutions)
            ]
            for chunk in _chunks(entries, chunk_size):
                self._store.insert(TABLE_TIME_ENTRIES, chunk)
                written += len(chunk)

            audit = UploadAudit(id=upload_id, file_label=file_label, row_count=row_count, status=UPLOAD_COMPLETED)
            self._store.insert(TABLE_UPLOAD_HISTORY, [audit.to_row()])
        except StoreError as exc:
            LOGGER.exception("Import %s aborted after %d time entries: %s", upload_id, written, exc)
            self._record_failure(upload_id, file_label, row_count)
            raise ImportFailedError(str(exc), upload_id=upload_id, written_entries=written) from exc

        summary = self._summarize(
            plan,
            time_records,
            resolutions,
            row_count=row_count,
            file_label=file_label,
            extra_warnings=extra_warnings,
        )
        summary.upload_id = upload_id
        summary.time_entries_written = written
        LOGGER.info(
            "Imported %s: created=%d updated=%d entries=%d unresolved=%d fallback=%d",
            file_label or upload_id,
            summary.created,
            summary.updated,
            written,
            summary.unresolved_count,
            summary.fallback_count,
            extra={"event": "import_summary", "upload_id": upload_id, "resolved_counts": summary.resolved_counts},
        )
        return summary

    def _record_failure(self, upload_id: str, file_label: str, row_count: int) -> None:
        audit = UploadAudit(id=upload_id, file_label=file_label, row_count=row_count, status=UPLOAD_FAILED)
        try:
            self._store.insert(TABLE_UPLOAD_HISTORY, [audit.to_row()])
        except StoreError:
            LOGGER.exception("Could not record failed upload %s", upload_id)


__all__ = ["ImportCoordinator", "ImportSummary", "SourceFile"]
