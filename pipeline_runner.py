import argparse
import json
import os
from dataclasses import replace
from importlib import import_module
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from course_dashboard.config import STORE_BACKENDS, AppConfig, configure_logging
from course_dashboard.errors import ImportFailedError
from course_dashboard.services.importer import ImportCoordinator, SourceFile
from course_dashboard.store import make_store
from course_dashboard.workbook import make_import_report_bytes

BASE_DIR = Path(__file__).resolve().parent
DEFAULT_CONFIG: Dict[str, Any] = {
    "legacy_file": None,
    "modern_file": None,
    "time_spent_file": None,
    "hierarchical_file": None,
    "store_path": None,
    "report_file": None,
    "host": "0.0.0.0",
    "port": 8050,
}

# CLI flag -> (config key, environment variable)
SOURCE_OPTIONS: Dict[str, tuple[str, str]] = {
    "legacy": ("legacy_file", "PIPELINE_LEGACY_FILE"),
    "modern": ("modern_file", "PIPELINE_MODERN_FILE"),
    "time_spent": ("time_spent_file", "PIPELINE_TIME_SPENT_FILE"),
    "hierarchical": ("hierarchical_file", "PIPELINE_HIERARCHICAL_FILE"),
}


def _load_config(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise SystemExit(f"Failed to parse JSON config {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise SystemExit(f"Configuration file {path} must contain a JSON object.")
    return data


def _resolve_path(value: Optional[str], base: Path) -> Optional[Path]:
    if value in (None, ""):
        return None
    candidate = Path(value)
    if not candidate.is_absolute():
        candidate = base / candidate
    return candidate.resolve()


def _read_source(path: Optional[Path]) -> Optional[SourceFile]:
    if path is None:
        return None
    if not path.exists():
        raise SystemExit(f"Input file '{path}' does not exist.")
    return path.name, path.read_bytes()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Import course and time-spent exports into the course dashboard store."
    )
    parser.add_argument("--legacy", help="Legacy course export (.xlsx or .csv).")
    parser.add_argument("--modern", help="Modern course export (.xlsx or .csv).")
    parser.add_argument("--time-spent", dest="time_spent", help="Granular time-spent export.")
    parser.add_argument("--hierarchical", help="Nested project/phase/task export.")
    parser.add_argument(
        "--preview",
        action="store_true",
        help="Reconcile against the store and report, without writing anything.",
    )
    parser.add_argument("--store", help="Store path (DuckDB file, JSON file for the local backend, or :memory:).")
    parser.add_argument("--backend", choices=STORE_BACKENDS, help="Store backend (default from STORE_BACKEND).")
    parser.add_argument("--report", help="Write an Excel report of the import summary to this path.")
    parser.add_argument(
        "--config",
        default="pipeline_config.json",
        help="Configuration file relative to the project root (default: pipeline_config.json).",
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Start the API server on the same store after importing.",
    )
    return parser


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    config_path = _resolve_path(args.config, BASE_DIR)
    if config_path is None:
        raise SystemExit("Unable to resolve configuration path.")

    config = DEFAULT_CONFIG.copy()
    config.update(_load_config(config_path))

    sources: Dict[str, Optional[SourceFile]] = {}
    for option, (config_key, env_name) in SOURCE_OPTIONS.items():
        raw = getattr(args, option) or os.getenv(env_name) or config.get(config_key)
        sources[option] = _read_source(_resolve_path(raw, BASE_DIR))
    if not any(sources.values()) and not args.serve:
        parser.error("Provide at least one of --legacy, --modern, --time-spent or --hierarchical.")

    configure_logging()
    app_config = AppConfig()
    store_path = args.store or os.getenv("STORE_PATH") or config.get("store_path")
    if store_path:
        resolved_store = store_path if store_path == ":memory:" else _resolve_path(store_path, BASE_DIR)
        app_config = replace(app_config, store_path=Path(str(resolved_store)))
    if args.backend:
        app_config = replace(app_config, store_backend=args.backend)
    app_config.validate()

    store = make_store(app_config)
    print(f"[pipeline] Using store: {store.describe()}")
    coordinator = ImportCoordinator(store, app_config)

    if any(sources.values()):
        batch = coordinator.extract_sources(**sources)
        for error in batch.file_errors:
            print(f"[pipeline] File error: {error}")
        try:
            summary = coordinator.preview_extracted(batch) if args.preview else coordinator.import_extracted(batch)
        except ImportFailedError as exc:
            print(
                f"[pipeline] Import failed (upload {exc.upload_id}, "
                f"{exc.written_entries} time entries already written): {exc}"
            )
            return 1

        print(json.dumps(summary.as_dict(), indent=2, default=str))

        report_path = _resolve_path(args.report or config.get("report_file"), BASE_DIR)
        if report_path is not None:
            report_path.parent.mkdir(parents=True, exist_ok=True)
            report_path.write_bytes(make_import_report_bytes(summary.as_dict()))
            print(f"[pipeline] Wrote import report to {report_path}")

    if args.serve:
        host = os.getenv("HOST", config.get("host", "0.0.0.0"))
        port = int(os.getenv("PORT", config.get("port", 8050)))
        print("[dashboard] Loading API app...")
        dashboard = import_module("app")
        server = dashboard.create_app(app_config, store=store)
        print(f"[dashboard] Starting server on http://{host}:{port}")
        server.run(host=host, port=port, debug=False)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
