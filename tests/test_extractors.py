"""
Tests for the workbook reader and the source-specific extractors.
"""

from io import BytesIO

import pytest
from openpyxl import Workbook

from conftest import LEGACY_HEADERS, MODERN_HEADERS, TIME_SPENT_HEADERS
from course_dashboard.errors import WorkbookParseError
from course_dashboard.extractors.course import extract_legacy_courses, extract_modern_courses
from course_dashboard.extractors.hierarchical import (
    DEFAULT_PHASE,
    TRANSITIONS,
    ParserState,
    RowKind,
    _HierarchyParser,
    extract_hierarchical,
    header_name,
    parse_hierarchical_rows,
)
from course_dashboard.extractors.time_spent import extract_time_spent
from course_dashboard.workbook import read_first_sheet


class TestReadFirstSheet:
    """Tests for read_first_sheet"""

    def test_blank_cells_and_rows(self, workbook):
        content = workbook(["A", "B"], [["x", None], [None, None], ["y", 2]])
        rows = read_first_sheet(content, "book.xlsx")
        assert rows == [{"A": "x", "B": ""}, {"A": "y", "B": 2}]

    def test_csv_by_extension(self):
        rows = read_first_sheet(b"Course Name,Time spent\nCourse A,2:00\n", "export.csv")
        assert rows == [{"Course Name": "Course A", "Time spent": "2:00"}]

    def test_empty_content(self):
        assert read_first_sheet(b"", "empty.xlsx") == []

    def test_unreadable_workbook(self):
        with pytest.raises(WorkbookParseError) as excinfo:
            read_first_sheet(b"PK\x03\x04not really a zip", "broken.xlsx")
        assert excinfo.value.file_label == "broken.xlsx"


class TestCourseExtractors:
    """Tests for the legacy and modern course extractors"""

    def test_legacy_rows(self, workbook):
        content = workbook(
            LEGACY_HEADERS,
            [
                ["Course A", "10:30", None, "2023 Courses", "Safety", "Compliance", "Rise", 12],
                ["Total: 45 courses", "99:00", None, None, None, None, None, None],
                [None, "1:00", "Completed", "2023", None, None, None, None],
                ["Course B", 12.5, "in-progress", 2024, None, None, None, 0],
            ],
        )
        records = extract_legacy_courses(content, "legacy.xlsx")

        assert [r.course_name for r in records] == ["Course A", "Course B"]
        first, second = records
        assert first.total_hours == pytest.approx(10.5)
        assert first.status == "Completed"
        assert first.reporting_year == "2023"
        assert first.vertical == "Safety"
        assert first.course_type == "Compliance"
        assert first.authoring_tool == "Rise"
        assert first.interaction_count == 12
        assert second.total_hours == pytest.approx(12.5)
        assert second.status == "In Progress"
        assert second.reporting_year == "2024"
        assert second.interaction_count is None

    def test_modern_plain_headers(self, workbook):
        content = workbook(
            ["Course Name", "Time spent", "Status", "Reporting", "Vertical"],
            [["Course C", "3:15", "Published", "2026", "Retail"]],
        )
        records = extract_modern_courses(content, "modern.xlsx")
        assert len(records) == 1
        assert records[0].status == "Published"
        assert records[0].reporting_year == "2026"
        assert records[0].vertical == "Retail"
        assert records[0].total_hours == pytest.approx(3.25)

    def test_modern_suffixed_headers(self, workbook):
        content = workbook(MODERN_HEADERS, [["Course D", "1:00", "Completed", "2025", "Tech", "", "", ""]])
        records = extract_modern_courses(content, "modern.xlsx")
        assert records[0].vertical == "Tech"

    def test_year_grouping_rows_carry_forward(self):
        content = (
            "Course Name,Time spent,Reporting\n"
            "2022 Courses (2),,\n"
            '"=HYPERLINK(""https://example.test/1"", ""Course E"")",1:00,\n'
            "Course F,2:00,2021\n"
        ).encode("utf-8")
        records = extract_legacy_courses(content, "grouped.csv")
        assert [(r.course_name, r.reporting_year) for r in records] == [
            ("Course E", "2022"),
            ("Course F", "2021"),
        ]

    def test_hmm_formatted_duration_cell(self):
        """Test a duration stored as an h:mm serial keeps its whole days"""
        book = Workbook()
        sheet = book.active
        sheet.append(["Course Name", "Time spent"])
        sheet.append(["Course A", 1.65625])
        sheet["B2"].number_format = "h:mm"
        buffer = BytesIO()
        book.save(buffer)

        records = extract_legacy_courses(buffer.getvalue(), "legacy.xlsx")
        assert records[0].total_hours == pytest.approx(39.75)

    def test_missing_name_column(self, workbook):
        content = workbook(["Something", "Else"], [["x", "y"]])
        assert extract_legacy_courses(content, "odd.xlsx") == []


class TestTimeSpentExtractor:
    """Tests for the time-spent extractor"""

    def test_rows(self, workbook):
        content = workbook(
            TIME_SPENT_HEADERS,
            [
                ["Course A", "Development", "3/7/2024", "2:00", "Dana"],
                ["Course B", "Review", 45000, "0:45", "Lee"],
                [None, "Review", "2024-01-01", "1:00", "Lee"],
                ["Course C", "QA", "someday", None, None],
            ],
        )
        records = extract_time_spent(content, "time.xlsx")

        assert [r.course_name for r in records] == ["Course A", "Course B", "Course C"]
        assert records[0].date == "2024-03-07"
        assert records[0].hours == pytest.approx(2.0)
        assert records[0].category == "Development"
        assert records[0].user_name == "Dana"
        assert records[1].date == "2023-03-15"
        assert records[1].hours == pytest.approx(0.75)
        assert records[2].date == "someday"
        assert records[2].hours == 0.0

    def test_correct_spelling_fills_in_for_typo(self, workbook):
        content = workbook(
            ["Cousre name", "Course name", "Time spent", "Date"],
            [[None, "Course A", "1:00", "2024-02-02"], ["Course B", None, "1:00", "2024-02-02"]],
        )
        records = extract_time_spent(content, "time.xlsx")
        assert [r.course_name for r in records] == ["Course A", "Course B"]


class TestHierarchicalExtractor:
    """Tests for the nested export state machine"""

    def setup_method(self):
        self.rows = [
            {"Task name": "Loose task", "Time spent": "1:00"},
            {"Task name": "Course X (5)", "Time spent": "9:00"},
            {"Task name": "Course X", "Time spent": "2:30"},
            {"Task name": "Storyboard (2)", "Time spent": "1:15"},
            {"Task name": "Course X", "Time spent": "1:15"},
            {"Task name": "Course X", "Time spent": "0:00"},
            {"Task name": "Course X (3)", "Time spent": ""},
            {"Task name": "Voiceover script", "Time spent": "0.5"},
            {"Task name": "", "Time spent": "4:00"},
        ]

    def test_transition_table_is_total(self):
        assert set(TRANSITIONS) == {(state, kind) for state in ParserState for kind in RowKind}

    def test_task_row_without_project_raises(self):
        """Test emitting an entry outside a project is a parser bug, not a silent row"""
        with pytest.raises(RuntimeError):
            _HierarchyParser()._emit_entry("Course X", 1.0, "Course X", "1:00")

    def test_header_name(self):
        assert header_name("Course X (12)") == "Course X"
        assert header_name("Course X(3)") == "Course X"
        assert header_name("Course X") is None
        assert header_name("Course (draft)") is None

    def test_entries(self):
        result = parse_hierarchical_rows(self.rows)
        assert [(e.project, e.phase, e.hours) for e in result.entries] == [
            ("Course X", DEFAULT_PHASE, 2.5),
            ("Course X", "Storyboard", 1.25),
            ("Course X", "Storyboard", 0.5),
        ]
        assert result.entries[2].raw_task_name == "Voiceover script"
        assert result.entries[2].raw_time_spent == "0.5"

    def test_diagnostics(self):
        diag = parse_hierarchical_rows(self.rows).diagnostics
        assert diag.orphan_rows == 1
        assert diag.header_rows == 3
        assert diag.phase_headers_assumed == 1
        assert diag.zero_hour_rows == 1
        assert diag.blank_rows == 1
        assert diag.guessed_rows == 1

    def test_second_project_header_is_taken_as_phase(self):
        """Known ambiguity: a later top-level header cannot be told apart from a phase"""
        rows = [
            {"Task name": "Course X (1)", "Time spent": ""},
            {"Task name": "Course X", "Time spent": "1:00"},
            {"Task name": "Course Y (1)", "Time spent": ""},
            {"Task name": "Course Y", "Time spent": "2:00"},
        ]
        result = parse_hierarchical_rows(rows)
        assert [(e.project, e.phase) for e in result.entries] == [
            ("Course X", DEFAULT_PHASE),
            ("Course X", "Course Y"),
        ]
        assert result.diagnostics.guessed_rows == 1
        assert result.warnings("wrike.xlsx")

    def test_time_records(self, workbook):
        content = workbook(
            ["Task name", "Time spent"],
            [[row["Task name"], row["Time spent"]] for row in self.rows if row["Task name"]],
        )
        result = extract_hierarchical(content, "wrike.xlsx")
        records = result.time_records()
        assert [r.course_name for r in records] == ["Course X"] * 3
        assert records[1].category == "Storyboard"
        assert records[0].date == ""
        assert any("dropped" in message for message in result.warnings("wrike.xlsx"))
