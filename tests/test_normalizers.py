"""
Tests for cell-level normalizers: durations, years, statuses and dates.
"""

import math
from datetime import date, datetime, time, timedelta

import pytest

from course_dashboard.normalizers import (
    cell_text,
    entry_year,
    is_completed_status,
    is_year_grouping_row,
    name_key,
    normalize_duration,
    normalize_status,
    normalize_year,
    parse_entry_date,
    parse_interaction_count,
    strip_hyperlink,
)


class TestNormalizeDuration:
    """Tests for normalize_duration"""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("39:45", 39.75),
            ("0:30", 0.5),
            ("2:00", 2.0),
            ("39:45:00", 39.75),
            ("1:00:36", 1.01),
        ],
    )
    def test_clock_strings_are_durations(self, raw, expected):
        """Test H:MM and H:MM:SS read as elapsed hours"""
        assert normalize_duration(raw) == pytest.approx(expected)

    def test_day_fraction_boundary(self):
        """Test numbers below 10 are day fractions and 10 is already hours"""
        assert normalize_duration(9.99) == pytest.approx(239.76)
        assert normalize_duration(10) == 10
        assert normalize_duration("0.5") == pytest.approx(12.0)
        assert normalize_duration("12.5") == pytest.approx(12.5)

    def test_1900_datetime_is_a_day_bucket(self):
        """Test 1900 dates count whole days from the epoch"""
        assert normalize_duration("1/9/1900 3:45:00 PM") == pytest.approx(207.75)
        assert normalize_duration("1/1/1900 12:15:00 AM") == pytest.approx(0.25)

    def test_other_datetimes_keep_time_of_day(self):
        """Test a real calendar date contributes only its time component"""
        assert normalize_duration("3/4/2024 2:30:00 PM") == pytest.approx(14.5)

    def test_native_cell_types(self):
        """Test typed cells follow the same rules as their text form"""
        assert normalize_duration(timedelta(hours=39, minutes=45)) == pytest.approx(39.75)
        assert normalize_duration(time(1, 30)) == pytest.approx(1.5)
        assert normalize_duration(datetime(2024, 5, 1, 6, 0)) == pytest.approx(6.0)

    def test_1900_datetime_cell_is_an_excel_serial(self):
        """Test typed 1900 dates read back as the serial openpyxl decoded them from"""
        # Serial 1.65625 (39:45) decodes to 1900-01-01 15:45 after openpyxl's leap-day shift.
        assert normalize_duration(datetime(1900, 1, 1, 15, 45)) == pytest.approx(39.75)
        # Serial 3.1666.. decodes to 1900-01-03 04:00.
        assert normalize_duration(datetime(1900, 1, 3, 4, 0)) == pytest.approx(76.0)
        # Serials of 10 and more are decimal hours.
        assert normalize_duration(datetime(1900, 1, 10, 12, 0)) == pytest.approx(10.5)
        assert normalize_duration(datetime(1900, 1, 1, 15, 45), day_fractions=False) == pytest.approx(1.65625)

    @pytest.mark.parametrize("raw", [None, "", "   ", "abc", float("nan"), "-5", -3, float("inf")])
    def test_garbage_degrades_to_zero(self, raw):
        """Test malformed input never raises"""
        assert normalize_duration(raw) == 0.0

    def test_leading_number_is_used(self):
        """Test text with a trailing unit still parses"""
        assert normalize_duration("12.5 hours") == pytest.approx(12.5)

    def test_day_fractions_can_be_disabled(self):
        """Test decimal-hours exports keep small numbers as hours"""
        assert normalize_duration("2.5", day_fractions=False) == pytest.approx(2.5)
        assert normalize_duration("1:15", day_fractions=False) == pytest.approx(1.25)


class TestNormalizeYear:
    """Tests for normalize_year"""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("2022 Courses (45)", "2022"),
            ("2024", "2024"),
            ("", ""),
            (None, ""),
            (2023, "2023"),
            (2023.0, "2023"),
            ("2021 Courses", "2021"),
            ("FY 2020/21", "2020"),
            ("Backlog", "Backlog"),
        ],
    )
    def test_extracts_first_four_digit_run(self, raw, expected):
        """Test the first 4-digit run wins, otherwise the text passes through"""
        assert normalize_year(raw) == expected


class TestNormalizeStatus:
    """Tests for normalize_status"""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("completed", "Completed"),
            ("Complete*", "Completed"),
            ("  PUBLISHED ", "Published"),
            ("in-progress", "In Progress"),
            ("In   progress", "In Progress"),
            ("On  Hold", "On Hold"),
            ("", "In Progress"),
            (None, "In Progress"),
        ],
    )
    def test_canonical_values(self, raw, expected):
        assert normalize_status(raw) == expected

    def test_fallback_is_used_for_blank(self):
        assert normalize_status("", "Completed") == "Completed"

    @pytest.mark.parametrize("raw", ["completed", "**Published**", "on hold ", "", None, "In-Progress", "x"])
    @pytest.mark.parametrize("fallback", ["In Progress", "Completed", ""])
    def test_idempotent(self, raw, fallback):
        """Test normalizing twice equals normalizing once"""
        once = normalize_status(raw, fallback)
        assert normalize_status(once, fallback) == once

    def test_completed_status(self):
        assert is_completed_status("complete")
        assert is_completed_status("Published")
        assert not is_completed_status("In Progress")
        assert not is_completed_status("")


class TestParseEntryDate:
    """Tests for parse_entry_date"""

    def test_us_date_is_reformatted(self):
        assert parse_entry_date("3/7/2024") == "2024-03-07"

    def test_iso_prefix_passthrough(self):
        assert parse_entry_date("2024-03-07T10:00:00") == "2024-03-07"

    def test_excel_serial_inside_bounds(self):
        assert parse_entry_date(45000) == "2023-03-15"
        assert parse_entry_date("45000") == "2023-03-15"

    def test_serial_bounds_are_exclusive(self):
        """Test small numbers are never mistaken for dates"""
        assert parse_entry_date(30000) == "30000"
        assert parse_entry_date(12) == "12"
        assert parse_entry_date(45000, serial_min=46000, serial_max=60000) == "45000"

    def test_native_dates(self):
        assert parse_entry_date(datetime(2024, 1, 2, 9, 30)) == "2024-01-02"
        assert parse_entry_date(date(2024, 1, 2)) == "2024-01-02"

    def test_unparseable_passes_through(self):
        assert parse_entry_date("next week") == "next week"
        assert parse_entry_date(None) == ""

    def test_entry_year(self):
        assert entry_year("2024-03-07") == 2024
        assert entry_year("2024-13-40") is None
        assert entry_year("next week") is None
        assert entry_year("") is None


class TestCellHelpers:
    """Tests for text helpers shared by the extractors"""

    def test_cell_text(self):
        assert cell_text(None) == ""
        assert cell_text(float("nan")) == ""
        assert cell_text(12.0) == "12"
        assert cell_text(" x ") == "x"

    def test_name_key(self):
        assert name_key("  Intro   to SAFETY ") == "intro to safety"

    @pytest.mark.parametrize(
        "raw, expected",
        [("12", 12), ("15 interactions", 15), (7.0, 7), ("0", None), ("", None), ("abc", None), (None, None)],
    )
    def test_interaction_count(self, raw, expected):
        assert parse_interaction_count(raw) == expected

    def test_strip_hyperlink(self):
        assert strip_hyperlink('=HYPERLINK("https://example.test/t/1", "Course A")') == "Course A"
        assert strip_hyperlink("Course B") == "Course B"

    def test_year_grouping_row(self):
        assert is_year_grouping_row("2022 Courses (45)")
        assert is_year_grouping_row("2023 courses")
        assert not is_year_grouping_row("Course 2022")

    def test_nan_duration_is_finite(self):
        assert math.isfinite(normalize_duration("nan"))
