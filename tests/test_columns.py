"""
Tests for alias-based column resolution.
"""

import pytest

from course_dashboard.columns import ColumnResolver, pick_column


class TestPickColumn:
    """Tests for pick_column"""

    def test_exact_match_beats_substring(self):
        columns = ["Course Name (archived)", "course name"]
        assert pick_column(columns, ["Course Name"]) == "course name"

    def test_substring_match(self):
        assert pick_column(["[LCT] Vertical (L)", "Status"], ["Vertical"]) == "[LCT] Vertical (L)"

    def test_aliases_tried_in_order(self):
        columns = ["Reporting", "[LCT] Reporting (M)"]
        assert pick_column(columns, ["[LCT] Reporting (M)", "Reporting"]) == "[LCT] Reporting (M)"

    def test_whitespace_and_nbsp_are_ignored(self):
        assert pick_column(["Time  spent "], ["time spent"]) == "Time  spent "

    def test_no_match(self):
        assert pick_column(["A", "B"], ["Course"]) is None
        assert pick_column([], ["Course"]) is None


class TestColumnResolver:
    """Tests for ColumnResolver"""

    def setup_method(self):
        self.rows = [{"Cousre name": "Course A", "Time spent": "1:00", "Notes": None}]
        self.schema = {
            "course": ["Cousre name", "Course name"],
            "hours": ["Time spent"],
            "user": ["User"],
            "notes": ["Notes"],
        }

    def test_resolves_once_from_first_row(self):
        resolver = ColumnResolver.from_rows(self.rows, self.schema)
        assert resolver.as_dict() == {
            "course": "Cousre name",
            "hours": "Time spent",
            "user": None,
            "notes": "Notes",
        }
        assert resolver.missing() == ["user"]

    def test_value_defaults_to_empty(self):
        resolver = ColumnResolver.from_rows(self.rows, self.schema)
        row = self.rows[0]
        assert resolver.value(row, "course") == "Course A"
        assert resolver.value(row, "user") == ""
        assert resolver.value(row, "notes") == ""

    def test_unknown_field_raises(self):
        resolver = ColumnResolver.from_rows(self.rows, self.schema)
        with pytest.raises(KeyError):
            resolver.column("missing")

    def test_empty_rows(self):
        resolver = ColumnResolver.from_rows([], self.schema)
        assert resolver.missing() == list(self.schema)
