"""Insights chat: summarize stored data and relay a streamed completion."""

from __future__ import annotations

import logging
from typing import Iterator, Mapping, Sequence

import requests

from ..config import AppConfig
from ..errors import ChatServiceError
from ..models import TABLE_PROJECTS, TABLE_TIME_ENTRIES
from ..store import BaseStore

LOGGER = logging.getLogger(__name__)

SYSTEM_PROMPT_TEMPLATE = """You are an analytics assistant for a project time tracking application. You help analyze course development time data.

Here is the current data:

## Projects ({project_count} total):
{project_summary}

## Hours by Project ({total_hours} total hours):
{hours_summary}

## Time Entries: {entry_count} entries across {project_with_time_count} projects.

Answer questions about this data concisely. Use specific numbers. If asked about trends or comparisons, reference the actual data. Format responses with markdown."""

_PROJECT_LABELS = (
    ("authoring_tool", "Tool"),
    ("vertical", "Vertical"),
    ("course_type", "Type"),
    ("id_assigned", "Assigned"),
    ("reporting_year", "Year"),
)


def _project_line(project: Mapping[str, object]) -> str:
    parts = [f"- {project.get('name') or ''}"]
    for field, label in _PROJECT_LABELS:
        value = project.get(field)
        if value:
            parts.append(f"{label}: {value}")
    return " | ".join(parts)


def _history_contents(history: Sequence[Mapping[str, object]]) -> list[dict[str, object]]:
    contents: list[dict[str, object]] = []
    for turn in history:
        if not isinstance(turn, Mapping):
            continue
        text = str(turn.get("content") or "")
        if not text:
            continue
        role = "model" if turn.get("role") == "assistant" else "user"
        contents.append({"role": role, "parts": [{"text": text}]})
    return contents


class ChatService:
    """Builds the prompt from the store and forwards it to the completion API."""

    def __init__(self, store: BaseStore, config: AppConfig, session: requests.Session | None = None):
        self._store = store
        self._config = config
        self._session = session or requests.Session()

    def build_system_prompt(self) -> str:
        projects = self._store.find(TABLE_PROJECTS)
        names = {str(p.get("id")): str(p.get("name") or "") for p in projects}
        entries = self._store.find(TABLE_TIME_ENTRIES)[: self._config.chat_entry_limit]

        hours_by_project: dict[str, float] = {}
        for entry in entries:
            name = names.get(str(entry.get("project_id")), "Unknown")
            hours_by_project[name] = hours_by_project.get(name, 0.0) + float(entry.get("hours") or 0)
        total_hours = sum(float(e.get("hours") or 0) for e in entries)

        hours_lines = [
            f"- {name}: {round(hours, 2)}h"
            for name, hours in sorted(hours_by_project.items(), key=lambda item: item[1], reverse=True)
        ]
        return SYSTEM_PROMPT_TEMPLATE.format(
            project_count=len(projects),
            project_summary="\n".join(_project_line(p) for p in projects) or "No projects yet.",
            total_hours=round(total_hours, 2),
            hours_summary="\n".join(hours_lines) or "No time entries yet.",
            entry_count=len(entries),
            project_with_time_count=len(hours_by_project),
        )

    def build_payload(self, message: str, history: Sequence[Mapping[str, object]] = ()) -> dict[str, object]:
        recent = list(history)[-self._config.chat_history_limit :] if self._config.chat_history_limit else []
        contents = _history_contents(recent)
        contents.append({"role": "user", "parts": [{"text": message}]})
        return {
            "system_instruction": {"parts": [{"text": self.build_system_prompt()}]},
            "contents": contents,
            "generationConfig": {
                "temperature": self._config.chat_temperature,
                "maxOutputTokens": self._config.chat_max_output_tokens,
            },
        }

    def open_stream(self, message: object, history: object = None) -> requests.Response:
        """Send the request and return the open streaming response.

        Raises :class:`ChatServiceError` with 400 for a missing message, 500
        when no API key is configured and 502 for upstream failures.
        """

        text = str(message or "").strip()
        if not text:
            raise ChatServiceError("No message provided", status_code=400)
        if not self._config.chat_api_key:
            raise ChatServiceError("Chat API key not configured", status_code=500)
        turns = history if isinstance(history, list) else []

        url = self._config.chat_api_url.format(model=self._config.chat_model)
        try:
            response = self._session.post(
                url,
                params={"key": self._config.chat_api_key},
                json=self.build_payload(text, turns),
                stream=True,
                timeout=self._config.chat_timeout_seconds,
            )
        except requests.exceptions.RequestException as exc:
            LOGGER.error("Chat API request failed: %s", exc)
            raise ChatServiceError("AI service error", status_code=502, details=str(exc)) from exc

        if not response.ok:
            details = response.text
            response.close()
            LOGGER.error("Chat API returned %s: %s", response.status_code, details[:500])
            raise ChatServiceError("AI service error", status_code=502, details=details)
        return response

    @staticmethod
    def iter_events(response: requests.Response) -> Iterator[bytes]:
        """Relay the upstream event stream unchanged."""

        try:
            for chunk in response.iter_content(chunk_size=None):
                if chunk:
                    yield chunk
        except requests.exceptions.RequestException as exc:
            LOGGER.warning("Chat stream interrupted: %s", exc)
        finally:
            response.close()


__all__ = ["ChatService", "SYSTEM_PROMPT_TEMPLATE"]
