"""Application configuration and logging utilities."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path


# Default on-disk store. The import pipeline writes here unless STORE_PATH
# points elsewhere or the local (JSON) backend is selected.
DEFAULT_STORE_PATH = Path("data") / "course_dashboard.duckdb"

STORE_BACKENDS: tuple[str, ...] = ("duckdb", "local")


def _parse_csv_env(name: str) -> tuple[str, ...]:
    """Parse a comma-separated environment variable into a tuple of values."""

    raw = os.getenv(name, "")
    if not raw:
        return ()
    parts: list[str] = []
    for chunk in raw.split(","):
        value = chunk.strip()
        if value:
            parts.append(value)
    return tuple(parts)


def _parse_bool_env(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class AppConfig:
    """Immutable configuration sourced from environment variables or defaults."""

    # Security
    secret_key: str = os.getenv("SECRET_KEY", "change-me")

    # Runtime environment
    app_env: str = os.getenv("APP_ENV", "development")
    behind_proxy: bool = os.getenv("BEHIND_PROXY", "0") == "1"
    max_upload_mb: int = int(os.getenv("MAX_UPLOAD_MB", "25"))
    rate_limit: str = os.getenv("RATE_LIMIT", "120/minute")

    # Persistence
    store_backend: str = os.getenv("STORE_BACKEND", "duckdb").strip().lower()
    store_path: Path = Path(os.getenv("STORE_PATH", str(DEFAULT_STORE_PATH)))
    allowed_data_root: Path = Path(os.getenv("ALLOWED_DATA_ROOT", ".")).resolve()

    # Import pipeline
    import_chunk_size: int = int(os.getenv("IMPORT_CHUNK_SIZE", "500"))
    # Export tooling changed after this year: entries dated up to it belong
    # to legacy-sourced courses, later ones to modern-sourced courses.
    source_hint_cutoff_year: int = int(os.getenv("SOURCE_HINT_CUTOFF_YEAR", "2025"))
    synthesize_time_only: bool = _parse_bool_env("SYNTHESIZE_TIME_ONLY")
    excel_serial_date_min: float = float(os.getenv("EXCEL_SERIAL_DATE_MIN", "30000"))
    excel_serial_date_max: float = float(os.getenv("EXCEL_SERIAL_DATE_MAX", "60000"))

    # Insights chat proxy
    chat_api_url: str = os.getenv(
        "CHAT_API_URL",
        "https://generativelanguage.googleapis.com/v1beta/models/{model}:streamGenerateContent?alt=sse",
    )
    chat_api_key: str | None = os.getenv("CHAT_API_KEY") or os.getenv("GOOGLE_GEMINI_KEY") or None
    chat_model: str = os.getenv("CHAT_MODEL", "gemini-2.0-flash")
    chat_entry_limit: int = int(os.getenv("CHAT_ENTRY_LIMIT", "500"))
    chat_history_limit: int = int(os.getenv("CHAT_HISTORY_LIMIT", "20"))
    chat_timeout_seconds: float = float(os.getenv("CHAT_TIMEOUT_SECONDS", "60"))
    chat_temperature: float = float(os.getenv("CHAT_TEMPERATURE", "0.7"))
    chat_max_output_tokens: int = int(os.getenv("CHAT_MAX_OUTPUT_TOKENS", "2048"))

    # CSP customisation: extra sources on top of 'self'
    csp_script_src: tuple[str, ...] = _parse_csv_env("CSP_SCRIPT_SRC")
    csp_style_src: tuple[str, ...] = _parse_csv_env("CSP_STYLE_SRC")
    csp_font_src: tuple[str, ...] = _parse_csv_env("CSP_FONT_SRC")
    csp_connect_src: tuple[str, ...] = _parse_csv_env("CSP_CONNECT_SRC")

    def validate(self) -> None:
        """Reject settings the pipeline cannot run with."""

        if self.store_backend not in STORE_BACKENDS:
            raise ValueError(
                f"STORE_BACKEND '{self.store_backend}' must be one of {', '.join(STORE_BACKENDS)}."
            )
        if self.import_chunk_size <= 0:
            raise ValueError(f"IMPORT_CHUNK_SIZE must be positive (got {self.import_chunk_size}).")
        if self.excel_serial_date_min >= self.excel_serial_date_max:
            raise ValueError("EXCEL_SERIAL_DATE_MIN must be lower than EXCEL_SERIAL_DATE_MAX.")

        if str(self.store_path) == ":memory:":
            return
        resolved_root = Path(self.allowed_data_root).expanduser().resolve()
        resolved_store = Path(self.store_path).expanduser().resolve()
        if resolved_root != resolved_store and resolved_root not in resolved_store.parents:
            raise ValueError(
                f"STORE_PATH '{resolved_store}' must reside inside ALLOWED_DATA_ROOT '{resolved_root}'."
            )


def configure_logging(level: int = logging.INFO) -> None:
    """Configure root logging once for the application."""

    root_logger = logging.getLogger()
    if root_logger.handlers:
        root_logger.debug("Logging already configured; skipping reconfiguration.")
        return

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )
