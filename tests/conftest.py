"""
Pytest configuration and fixtures for all tests.

Puts the project root on the Python path and keeps every store in memory
so no test touches the working directory.
"""

import os
import sys
from io import BytesIO
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

# Must be set before course_dashboard.config is imported: defaults are read once.
os.environ.setdefault("STORE_PATH", ":memory:")
os.environ.setdefault("STORE_BACKEND", "duckdb")

import pytest
from openpyxl import Workbook

from course_dashboard.config import AppConfig
from course_dashboard.store import DuckDBStore, LocalStore


def build_workbook(headers, rows) -> bytes:
    """Serialize a single-sheet xlsx workbook in memory."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(list(headers))
    for row in rows:
        sheet.append(list(row))
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


LEGACY_HEADERS = [
    "Course Name",
    "Time spent",
    "[LCT] Status (L)",
    "[LCT] Reporting (L)",
    "[LCT] Vertical (L)",
    "[LCT] Course Type (L)",
    "[LCT] Authoring Tool (L)",
    "[LCT] Interaction Count (L)",
]

MODERN_HEADERS = [
    "Course Name",
    "Time spent",
    "[LCT] Status (M)",
    "[LCT] Reporting (M)",
    "[LCT] Vertical (M)",
    "[LCT] Course Type (M)",
    "[LCT] Authoring Tool (M)",
    "[LCT] Interaction Count (M)",
]

TIME_SPENT_HEADERS = ["Cousre name", "Category", "Date", "Time spent", "User"]


@pytest.fixture
def workbook():
    """Factory fixture: ``workbook(headers, rows) -> bytes``."""
    return build_workbook


@pytest.fixture
def legacy_bytes():
    return build_workbook(
        LEGACY_HEADERS,
        [["Course A", "10:30", "Completed", "2023 Courses", "Safety", "Compliance", "Rise", 12]],
    )


@pytest.fixture
def time_spent_bytes():
    return build_workbook(
        TIME_SPENT_HEADERS,
        [["Course A", "Development", "2023-06-01", "2:00", "Dana"]],
    )


@pytest.fixture
def config():
    return AppConfig(store_path=Path(":memory:"), import_chunk_size=500, chat_api_key="test-key")


@pytest.fixture
def duckdb_store():
    store = DuckDBStore()
    yield store
    store.close()


@pytest.fixture
def local_store():
    return LocalStore()


@pytest.fixture(params=["duckdb", "local"])
def store(request):
    """Each pipeline test runs against both store adapters."""
    if request.param == "duckdb":
        adapter = DuckDBStore()
        yield adapter
        adapter.close()
    else:
        yield LocalStore()
