"""Alias-based column resolution for drifting spreadsheet headers.

Export tools rename columns between versions ("Vertical" vs
"[LCT] Vertical (L)"), so extractors never index rows by exact header.
They declare the aliases each logical field may appear under and let a
:class:`ColumnResolver` pick the actual header once per workbook.
"""
from __future__ import annotations

import re
from typing import Iterable, Mapping, Sequence


def _norm(text: object) -> str:
    """Lowercase and collapse whitespace so headers compare loosely."""
    return re.sub(r"\s+", " ", str(text).replace("\u00a0", " ")).strip().lower()


def pick_column(columns: Iterable[object], aliases: Sequence[str]) -> str | None:
    """Return the first header matching *aliases*, or None.

    Exact (normalized) matches win over substring matches; within each pass
    aliases are tried in the order given, so more specific aliases should
    come first.
    """
    mapping: dict[str, str] = {}
    for col in columns:
        if col is None:
            continue
        mapping.setdefault(_norm(col), str(col))

    for alias in aliases:
        key = _norm(alias)
        if key in mapping:
            return mapping[key]
    for alias in aliases:
        key = _norm(alias)
        if not key:
            continue
        for normalized, original in mapping.items():
            if key in normalized:
                return original
    return None


class ColumnResolver:
    """Resolve logical field names to actual headers for one workbook."""

    def __init__(self, columns: Iterable[object], schema: Mapping[str, Sequence[str]]):
        self._columns = [str(c) for c in columns if c is not None]
        self._schema = dict(schema)
        self._resolved: dict[str, str | None] = {
            field: pick_column(self._columns, aliases) for field, aliases in self._schema.items()
        }

    @classmethod
    def from_rows(cls, rows: Sequence[Mapping[str, object]], schema: Mapping[str, Sequence[str]]) -> "ColumnResolver":
        """Build a resolver from the keys of the first parsed row."""
        columns = list(rows[0].keys()) if rows else []
        return cls(columns, schema)

    def column(self, field: str) -> str | None:
        if field not in self._resolved:
            raise KeyError(f"Unknown field '{field}'; expected one of {sorted(self._resolved)}")
        return self._resolved[field]

    def value(self, row: Mapping[str, object], field: str) -> object:
        """Cell for *field* in *row*; unset or unresolved cells read as ``""``."""
        column = self.column(field)
        if column is None:
            return ""
        value = row.get(column, "")
        return "" if value is None else value

    def missing(self) -> list[str]:
        return [field for field, column in self._resolved.items() if column is None]

    def as_dict(self) -> dict[str, str | None]:
        return dict(self._resolved)


__all__ = ["ColumnResolver", "pick_column"]
