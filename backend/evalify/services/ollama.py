from __future__ import annotations

import json
import logging
import re
import time
from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from evalify.core.config import settings


log = logging.getLogger(__name__)


DEFAULT_DESCRIPTIVE_PROMPT = (
    "You are a strict but fair examiner. Grade the student's answer against the model answer "
    "and the expected keywords. Reply with JSON only: "
    '{"score": <number between 0 and max_marks>, "feedback": "<one or two sentences>"}.'
)


class OllamaGrade(BaseModel):
    score: float = Field(ge=0)
    feedback: str | None = None


def _extract_json(text: str) -> dict[str, Any] | None:
    if not text:
        return None

    s = text.strip()
    if s.startswith("{") and s.endswith("}"):
        try:
            return json.loads(s)
        except ValueError:
            pass

    m = re.search(r"\{[\s\S]*\}", s)
    if not m:
        return None

    try:
        return json.loads(m.group(0))
    except ValueError:
        return None


def grade_descriptive_ollama(
    *,
    question: str,
    student_answer: str,
    max_marks: float,
    model_answer: str | None = None,
    keywords: list[str] | None = None,
    system_prompt: str | None = None,
    model: str | None = None,
    debug_out: dict[str, Any] | None = None,
) -> OllamaGrade | None:
    """Ask the configured Ollama model to grade a free-text answer.

    Returns None whenever grading is disabled or the model reply is unusable; the
    caller then leaves the answer for manual review.
    """
    if not bool(settings.ollama_enabled):
        return None

    use_model = str(model or "").strip() or str(settings.ollama_model or "").strip()
    url = str(settings.ollama_base_url or "").strip().rstrip("/") + "/api/chat"

    payload = {
        "model": use_model,
        "stream": False,
        "keep_alive": "30m",
        "format": "json",
        "options": {"temperature": 0},
        "messages": [
            {"role": "system", "content": str(system_prompt or "").strip() or DEFAULT_DESCRIPTIVE_PROMPT},
            {
                "role": "user",
                "content": (
                    f"Question:\n{question[:4000]}\n\n"
                    f"Model answer:\n{(model_answer or '')[:4000]}\n\n"
                    f"Expected keywords: {', '.join(keywords or []) or '-'}\n\n"
                    f"max_marks: {float(max_marks)}\n\n"
                    f"Student answer:\n{student_answer[:8000]}"
                ),
            },
        ],
    }

    def _set_debug(error: str) -> None:
        if debug_out is not None:
            debug_out["error"] = error

    timeout = httpx.Timeout(connect=4.0, read=float(settings.ollama_timeout_read_seconds), write=20.0, pool=3.0)
    data: dict[str, Any] | None = None
    last_exc: Exception | None = None
    with httpx.Client(timeout=timeout) as client:
        for attempt in range(1, 4):
            try:
                r = client.post(url, json=payload)
                r.raise_for_status()
                data = r.json()
                last_exc = None
                break
            except (httpx.HTTPError, ValueError) as e:
                last_exc = e
                time.sleep(0.35 * attempt)

    if last_exc is not None:
        status = getattr(getattr(last_exc, "response", None), "status_code", None)
        log.warning("ollama grading failed model=%s err=%s: %s", use_model, type(last_exc).__name__, last_exc)
        _set_debug(f"request_failed:{type(last_exc).__name__}{(':HTTP_' + str(status)) if status else ''}")
        return None

    message = data.get("message") if isinstance(data, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    obj = _extract_json(content if isinstance(content, str) else "")
    if not obj:
        _set_debug("invalid_json")
        return None

    try:
        grade = OllamaGrade.model_validate(obj)
    except ValidationError:
        _set_debug("schema_validation_failed")
        return None

    # Models occasionally overshoot the scale.
    grade.score = min(float(grade.score), float(max_marks))
    return grade


def ollama_healthcheck() -> tuple[bool, str | None]:
    if not bool(settings.ollama_enabled):
        return False, "disabled"

    url = str(settings.ollama_base_url or "").strip().rstrip("/") + "/api/tags"
    try:
        with httpx.Client(timeout=2.5) as client:
            r = client.get(url)
            if r.status_code >= 400:
                return False, f"http_{r.status_code}"
        return True, None
    except httpx.HTTPError as e:
        return False, f"unreachable:{type(e).__name__}"
