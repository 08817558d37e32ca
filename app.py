"""Flask application entry point for the course dashboard API."""
from __future__ import annotations

import logging
import os
import time

import psutil
from flask import Flask, Response, jsonify, request, stream_with_context
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_talisman import Talisman
from pythonjsonlogger import jsonlogger
from werkzeug.middleware.proxy_fix import ProxyFix

from course_dashboard.config import AppConfig, configure_logging
from course_dashboard.errors import ChatServiceError, ImportFailedError, StoreError
from course_dashboard.metrics import metrics_payload
from course_dashboard.models import TABLE_PROJECTS, TABLE_TIME_ENTRIES, TABLE_UPLOAD_HISTORY
from course_dashboard.services.chat import ChatService
from course_dashboard.services.importer import ImportCoordinator, SourceFile
from course_dashboard.store import BaseStore, make_store


LOGGER = logging.getLogger(__name__)

UPLOAD_FIELDS: tuple[str, ...] = ("legacy", "modern", "time_spent", "hierarchical")


def _ensure_json_logging() -> None:
    """Attach a JSON formatter to the root logger if not already present."""

    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        if getattr(handler, "_is_json_handler", False):
            return

    json_handler = logging.StreamHandler()
    json_handler.setFormatter(jsonlogger.JsonFormatter())
    json_handler._is_json_handler = True  # type: ignore[attr-defined]
    root_logger.addHandler(json_handler)


def _merge_csp_values(*groups: tuple[str, ...] | list[str]) -> list[str]:
    merged: list[str] = []
    seen: set[str] = set()
    for group in groups:
        for value in group:
            if value not in seen:
                seen.add(value)
                merged.append(value)
    return merged


def _uploaded_sources() -> dict[str, SourceFile]:
    sources: dict[str, SourceFile] = {}
    for field in UPLOAD_FIELDS:
        upload = request.files.get(field)
        if upload is None or not upload.filename:
            continue
        sources[field] = (upload.filename, upload.read())
    return sources


def create_app(config: AppConfig | None = None, store: BaseStore | None = None) -> Flask:
    """Create and configure the Flask application instance."""

    configure_logging()
    _ensure_json_logging()

    active_config = config or AppConfig()
    active_config.validate()
    active_store = store or make_store(active_config)
    coordinator = ImportCoordinator(active_store, active_config)
    chat_service = ChatService(active_store, active_config)

    server = Flask(__name__)
    server.config["SECRET_KEY"] = active_config.secret_key
    server.config["SESSION_COOKIE_SECURE"] = True
    server.config["SESSION_COOKIE_SAMESITE"] = "Lax"
    server.config["MAX_CONTENT_LENGTH"] = active_config.max_upload_mb * 1024 * 1024
    server.extensions["course_dashboard"] = {
        "config": active_config,
        "store": active_store,
        "coordinator": coordinator,
        "chat": chat_service,
    }

    if active_config.app_env == "production":
        if active_config.behind_proxy:
            server.wsgi_app = ProxyFix(server.wsgi_app, x_for=1, x_proto=1, x_host=1)

        csp = {
            "default-src": ["'self'"],
            "img-src": ["'self'", "data:"],
            "style-src": ["'self'"],
            "script-src": ["'self'"],
            "connect-src": ["'self'"],
            "font-src": ["'self'", "data:"],
        }
        csp["script-src"] = _merge_csp_values(csp["script-src"], active_config.csp_script_src)
        csp["style-src"] = _merge_csp_values(csp["style-src"], active_config.csp_style_src)
        csp["font-src"] = _merge_csp_values(csp["font-src"], active_config.csp_font_src)
        csp["connect-src"] = _merge_csp_values(csp["connect-src"], active_config.csp_connect_src)

        Talisman(
            server,
            force_https=True,
            strict_transport_security=True,
            frame_options="DENY",
            content_security_policy={key: " ".join(values) for key, values in csp.items()},
        )
        Limiter(get_remote_address, app=server, default_limits=[active_config.rate_limit])

    @server.before_request
    def _capture_request_start() -> None:
        request.environ["request_start_time"] = time.perf_counter()

    @server.after_request
    def _log_request(response):  # type: ignore[override]
        start_time = request.environ.get("request_start_time")
        duration_ms = 0.0
        if start_time is not None:
            duration_ms = (time.perf_counter() - start_time) * 1000

        log_data = {
            "event": "http_request",
            "path": request.path,
            "method": request.method,
            "status": response.status_code,
            "duration_ms": round(duration_ms, 2),
            "content_length": response.calculate_content_length() or 0,
        }
        LOGGER.info("request", extra=log_data)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "no-referrer"
        return response

    def _run_import(preview: bool):
        sources = _uploaded_sources()
        if not sources:
            return jsonify({"error": f"No files provided; expected any of {', '.join(UPLOAD_FIELDS)}"}), 400

        batch = coordinator.extract_sources(**sources)
        try:
            summary = coordinator.preview_extracted(batch) if preview else coordinator.import_extracted(batch)
        except ImportFailedError as exc:
            return (
                jsonify(
                    {
                        "error": str(exc),
                        "upload_id": exc.upload_id,
                        "time_entries_written": exc.written_entries,
                    }
                ),
                500,
            )
        return jsonify(summary.as_dict())

    @server.post("/api/import")
    def import_files():  # type: ignore[override]
        return _run_import(preview=False)

    @server.post("/api/import/preview")
    def preview_files():  # type: ignore[override]
        return _run_import(preview=True)

    @server.get("/api/projects")
    def list_projects():  # type: ignore[override]
        return jsonify(active_store.find(TABLE_PROJECTS))

    @server.get("/api/time-entries")
    def list_time_entries():  # type: ignore[override]
        filters = {}
        if "project_id" in request.args:
            filters["project_id"] = request.args["project_id"] or None
        if request.args.get("upload_id"):
            filters["upload_id"] = request.args["upload_id"]
        return jsonify(active_store.find(TABLE_TIME_ENTRIES, filters))

    @server.get("/api/uploads")
    def list_uploads():  # type: ignore[override]
        rows = active_store.find(TABLE_UPLOAD_HISTORY)
        return jsonify(list(reversed(rows)))

    @server.get("/api/metrics")
    def metrics():  # type: ignore[override]
        return jsonify(metrics_payload(active_store))

    @server.post("/api/chat")
    def chat():  # type: ignore[override]
        body = request.get_json(silent=True) or {}
        try:
            upstream = chat_service.open_stream(body.get("message"), body.get("history"))
        except ChatServiceError as exc:
            payload = {"error": str(exc)}
            if exc.details:
                payload["details"] = exc.details
            return jsonify(payload), exc.status_code

        return Response(
            stream_with_context(chat_service.iter_events(upstream)),
            mimetype="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    @server.get("/__/health")
    def healthcheck():  # type: ignore[override]
        process = psutil.Process(os.getpid())
        rss_mb = process.memory_info().rss / (1024 * 1024)
        payload = {
            "status": "ok",
            "rss_mb": round(rss_mb, 2),
            "store": active_store.describe(),
            "chat_configured": bool(active_config.chat_api_key),
        }
        return jsonify(payload)

    @server.get("/__/ready")
    def readiness():  # type: ignore[override]
        try:
            projects = active_store.find(TABLE_PROJECTS)
        except StoreError as exc:
            LOGGER.warning("Readiness probe failed: %s", exc)
            return jsonify({"status": "unavailable", "projects": 0}), 503
        return jsonify({"status": "ok", "projects": len(projects)})

    @server.errorhandler(StoreError)
    def _store_error(e):  # type: ignore[override]
        LOGGER.exception("Store failure: %s", e)
        return {"error": "store unavailable"}, 503

    @server.errorhandler(403)
    def _forbidden(e):
        return {"error": "forbidden"}, 403

    @server.errorhandler(413)
    def _too_large(e):
        return {"error": f"upload exceeds {active_config.max_upload_mb} MB"}, 413

    @server.errorhandler(500)
    def _ise(e):
        return {"error": "internal server error"}, 500

    return server


def main() -> None:
    """Run the Flask development server."""

    app.run(host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8050")), debug=False)


app = create_app()
server = app


if __name__ == "__main__":
    main()
