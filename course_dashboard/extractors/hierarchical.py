"""Nested project/phase/task export extractor (Wrike-style).

The export has no project column. Hierarchy is implied by row order:
headers carry a child count suffix such as ``"Onboarding 101 (12)"``. The
first header opens the project and every later header with a different
name is taken as a phase inside it; rows without the suffix are leaf time
entries filed under the current project and phase, whatever their own name.

That rule cannot tell a phase header from a second project header. It is
kept as is; the parser is a two-state machine driven by
:data:`TRANSITIONS` and counts every such guess in :class:`ParseDiagnostics`
so the import summary can report it.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from ..columns import ColumnResolver
from ..models import HierarchicalEntry, TimeSpentRecord
from ..normalizers import cell_text, normalize_duration, normalize_whitespace
from ..workbook import read_first_sheet

LOGGER = logging.getLogger(__name__)

HIERARCHICAL_SCHEMA: dict[str, list[str]] = {
    "task_name": ["Task name", "Title", "Name"],
    "time_spent": ["Time spent", "Duration", "Hours"],
}

DEFAULT_PHASE = "Uncategorized"
HEADER_RE = re.compile(r"^(.+?)\s*\(\d+\)$")


class ParserState(str, Enum):
    AWAITING_PROJECT = "awaiting_project"
    IN_PROJECT = "in_project"


class RowKind(str, Enum):
    HEADER = "header"
    LEAF = "leaf"


def header_name(task_name: str) -> Optional[str]:
    """Base name of a ``"Name (N)"`` header row, or None for a leaf row."""
    match = HEADER_RE.match(task_name)
    return match.group(1).strip() if match else None


@dataclass
class ParseDiagnostics:
    header_rows: int = 0
    phase_headers_assumed: int = 0
    orphan_rows: int = 0
    zero_hour_rows: int = 0
    blank_rows: int = 0

    @property
    def guessed_rows(self) -> int:
        """Rows whose placement rests on the layout heuristic alone."""
        return self.phase_headers_assumed

    def as_dict(self) -> dict[str, int]:
        return {
            "header_rows": self.header_rows,
            "phase_headers_assumed": self.phase_headers_assumed,
            "orphan_rows": self.orphan_rows,
            "zero_hour_rows": self.zero_hour_rows,
            "blank_rows": self.blank_rows,
            "guessed_rows": self.guessed_rows,
        }


@dataclass
class HierarchicalParseResult:
    entries: list[HierarchicalEntry] = field(default_factory=list)
    diagnostics: ParseDiagnostics = field(default_factory=ParseDiagnostics)

    def time_records(self) -> list[TimeSpentRecord]:
        return [entry.to_time_spent() for entry in self.entries]

    def warnings(self, filename: str | None = None) -> list[str]:
        label = filename or "hierarchical export"
        diag = self.diagnostics
        messages: list[str] = []
        if diag.orphan_rows:
            messages.append(f"{label}: {diag.orphan_rows} task row(s) appeared before any project header and were dropped")
        if diag.guessed_rows:
            messages.append(
                f"{label}: {diag.guessed_rows} header row(s) assumed to be phases of "
                "the current project; check the export if it holds several projects"
            )
        return messages


class _HierarchyParser:
    """Row-by-row state machine; one instance per workbook."""

    def __init__(self) -> None:
        self.state = ParserState.AWAITING_PROJECT
        self.project: Optional[str] = None
        self.phase = DEFAULT_PHASE
        self.result = HierarchicalParseResult()

    def _start_project(self, name: str, hours: float, raw_name: str, raw_hours: str) -> ParserState:
        self.project = name
        self.phase = DEFAULT_PHASE
        return ParserState.IN_PROJECT

    def _enter_phase(self, name: str, hours: float, raw_name: str, raw_hours: str) -> ParserState:
        if name != self.project:
            self.phase = name
            self.result.diagnostics.phase_headers_assumed += 1
        return ParserState.IN_PROJECT

    def _drop_orphan(self, name: str, hours: float, raw_name: str, raw_hours: str) -> ParserState:
        self.result.diagnostics.orphan_rows += 1
        return ParserState.AWAITING_PROJECT

    def _emit_entry(self, name: str, hours: float, raw_name: str, raw_hours: str) -> ParserState:
        if self.project is None:
            raise RuntimeError("task row reached before any project header")
        self.result.entries.append(
            HierarchicalEntry(
                project=self.project,
                phase=self.phase,
                hours=round(hours, 2),
                raw_task_name=raw_name,
                raw_time_spent=raw_hours,
            )
        )
        return ParserState.IN_PROJECT

    def feed(self, task_name: str, raw_hours: object) -> None:
        diag = self.result.diagnostics
        if not task_name:
            diag.blank_rows += 1
            return

        base = header_name(task_name)
        if base is not None:
            kind = RowKind.HEADER
            diag.header_rows += 1
            name = base
            hours = 0.0
        else:
            kind = RowKind.LEAF
            name = task_name
            hours = normalize_duration(raw_hours, day_fractions=False)
            if hours == 0:
                diag.zero_hour_rows += 1
                return

        action = TRANSITIONS[(self.state, kind)]
        self.state = action(self, name, hours, task_name, cell_text(raw_hours))


TRANSITIONS: dict[tuple[ParserState, RowKind], Callable[..., ParserState]] = {
    (ParserState.AWAITING_PROJECT, RowKind.HEADER): _HierarchyParser._start_project,
    (ParserState.AWAITING_PROJECT, RowKind.LEAF): _HierarchyParser._drop_orphan,
    (ParserState.IN_PROJECT, RowKind.HEADER): _HierarchyParser._enter_phase,
    (ParserState.IN_PROJECT, RowKind.LEAF): _HierarchyParser._emit_entry,
}


def parse_hierarchical_rows(rows: list[dict[str, object]]) -> HierarchicalParseResult:
    """Run the hierarchy state machine over already-parsed sheet rows."""
    resolver = ColumnResolver.from_rows(rows, HIERARCHICAL_SCHEMA)
    parser = _HierarchyParser()
    if rows and resolver.column("task_name") is None:
        LOGGER.warning("No task name column in hierarchical export; columns=%s", list(rows[0]))
        return parser.result

    for row in rows:
        parser.feed(normalize_whitespace(resolver.value(row, "task_name")), resolver.value(row, "time_spent"))
    return parser.result


def extract_hierarchical(content: bytes, filename: str | None = None) -> HierarchicalParseResult:
    """Parse a nested export into leaf entries tagged with project and phase."""
    result = parse_hierarchical_rows(read_first_sheet(content, filename))
    LOGGER.info(
        "Extracted %d hierarchical entries from %s diagnostics=%s",
        len(result.entries),
        filename,
        result.diagnostics.as_dict(),
    )
    return result


__all__ = [
    "DEFAULT_PHASE",
    "HierarchicalParseResult",
    "ParseDiagnostics",
    "ParserState",
    "RowKind",
    "TRANSITIONS",
    "extract_hierarchical",
    "header_name",
    "parse_hierarchical_rows",
]
