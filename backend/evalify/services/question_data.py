"""Versioned question payloads: wrapping, validation and the student view.

Question content is stored as ``{"version": 1, "data": {...}}`` in both
``question_data`` and ``solution``. Legacy rows may hold the bare payload, so
every reader goes through :func:`unwrap`.
"""

from __future__ import annotations

import copy
import random
from typing import Any

from evalify.models.question import Question, QuestionType


DATA_VERSION = 1

FITB_EVALUATION_TYPES = {"NORMAL", "STRICT", "HYBRID"}
FITB_ANSWER_TYPES = {"TEXT", "NUMBER", "UPPERCASE", "LOWERCASE"}
TEST_CASE_VISIBILITY = {"VISIBLE", "HIDDEN"}

MAX_QUESTION_LENGTH = 5000


def unwrap(value: Any) -> Any:
    if isinstance(value, dict) and "version" in value and "data" in value:
        return value["data"]
    return value


def wrap(value: Any) -> dict[str, Any] | None:
    if value is None:
        return None
    return {"version": DATA_VERSION, "data": unwrap(value)}


def _blank_keys(mapping: Any, field: str | None = None) -> dict[str, Any]:
    # JSON object keys are always strings; callers may send ints.
    if not isinstance(mapping, dict):
        if mapping is not None and field is not None:
            raise ValueError(f"{field} must be an object keyed by blank index")
        return {}
    return {str(k): v for k, v in mapping.items()}


def _config(data: dict) -> dict:
    config = data.get("config")
    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ValueError("config must be an object")
    return config


def _list(value: Any, field: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{field} must be a list")
    return value


def _number(value: Any, field: str) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{field} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{field} must be a number") from e


def _text(value: Any) -> str:
    s = str(value or "").strip()
    return "" if s == "<p></p>" else s


def _options(data: dict) -> list[dict]:
    opts = data.get("options")
    if not isinstance(opts, list):
        return []
    return [o for o in opts if isinstance(o, dict)]


def correct_option_ids(solution: dict | None) -> set[str]:
    sol = unwrap(solution) or {}
    items = sol.get("correctOptions") if isinstance(sol, dict) else None
    out: set[str] = set()
    for item in items if isinstance(items, list) else []:
        if isinstance(item, dict) and item.get("isCorrect", True) and item.get("id") is not None:
            out.add(str(item["id"]))
        elif isinstance(item, str):
            out.add(item)
    return out


def _validate_choice(qtype: QuestionType, data: dict, solution: dict) -> None:
    options = _options(data)
    if len(options) < 2:
        raise ValueError("at least 2 options are required")

    ids = [str(o.get("id") or "") for o in options]
    if any(not i for i in ids):
        raise ValueError("every option needs an id")
    if len(set(ids)) != len(ids):
        raise ValueError("option ids must be unique")
    for idx, o in enumerate(options, start=1):
        if not _text(o.get("optionText")):
            raise ValueError(f"option {idx} text cannot be empty")

    correct = correct_option_ids(solution)
    if not correct:
        raise ValueError("at least one correct answer must be selected")
    if not correct.issubset(set(ids)):
        raise ValueError("correct options must reference existing options")
    if qtype == QuestionType.MCQ and len(correct) > 1:
        raise ValueError("MCQ can have only one correct answer, use MMCQ for multiple correct answers")


def _validate_true_false(solution: dict) -> None:
    if not isinstance(solution.get("trueFalseAnswer"), bool):
        raise ValueError("trueFalseAnswer must be a boolean")


def _validate_fill_the_blank(data: dict, solution: dict) -> None:
    config = _config(data)
    try:
        blank_count = int(config.get("blankCount") or 0)
    except (TypeError, ValueError) as e:
        raise ValueError("blankCount must be an integer") from e
    if blank_count < 1:
        raise ValueError("blankCount must be at least 1")

    eval_type = str(config.get("evaluationType") or "NORMAL").upper()
    if eval_type not in FITB_EVALUATION_TYPES:
        raise ValueError("invalid evaluationType")

    for k, w in _blank_keys(config.get("blankWeights"), "blankWeights").items():
        if _number(w, f"blank weight for {k}") < 0:
            raise ValueError(f"blank weight for {k} cannot be negative")

    answers = _blank_keys(solution.get("acceptableAnswers"), "acceptableAnswers")
    for idx in range(blank_count):
        entry = answers.get(str(idx))
        if not isinstance(entry, dict):
            raise ValueError(f"acceptable answers missing for blank {idx}")
        values = [a for a in _list(entry.get("answers"), f"answers for blank {idx}") if str(a).strip()]
        if not values:
            raise ValueError(f"acceptable answers missing for blank {idx}")
        atype = str(entry.get("type") or "TEXT").upper()
        if atype not in FITB_ANSWER_TYPES:
            raise ValueError(f"invalid answer type for blank {idx}")
        if atype == "NUMBER":
            for a in values:
                try:
                    float(str(a).strip())
                except ValueError as e:
                    raise ValueError(f"blank {idx} expects numeric answers") from e


def _validate_descriptive(data: dict) -> None:
    config = _config(data)
    min_w = config.get("minWords")
    max_w = config.get("maxWords")
    if min_w is not None:
        min_w = _number(min_w, "minWords")
    if max_w is not None:
        max_w = _number(max_w, "maxWords")
    if min_w is not None and min_w < 0:
        raise ValueError("minWords cannot be negative")
    if min_w is not None and max_w is not None and min_w > max_w:
        raise ValueError("minWords cannot exceed maxWords")


def _validate_matching(data: dict, solution: dict) -> None:
    options = _options(data)
    left = {str(o.get("id")) for o in options if o.get("isLeft")}
    right = {str(o.get("id")) for o in options if not o.get("isLeft")}
    if not left or not right:
        raise ValueError("matching needs at least one left and one right option")

    for item in _list(solution.get("options"), "solution options"):
        if not isinstance(item, dict):
            continue
        if str(item.get("id")) not in left:
            raise ValueError("matching solution must reference left options")
        for rid in _list(item.get("matchPairIds"), "matchPairIds"):
            if str(rid) not in right:
                raise ValueError("matching solution must pair with right options")


def _validate_coding(data: dict) -> None:
    config = _config(data)
    if not str(config.get("language") or "").strip():
        raise ValueError("coding language is required")
    for tc in _list(data.get("testCases"), "testCases"):
        if not isinstance(tc, dict) or not tc.get("id"):
            raise ValueError("every test case needs an id")
        vis = str(tc.get("visibility") or "HIDDEN").upper()
        if vis not in TEST_CASE_VISIBILITY:
            raise ValueError("invalid test case visibility")


def _validate_file_upload(data: dict) -> None:
    config = _config(data)
    for key in ("maxFileSizeInMB", "maxFiles"):
        v = config.get(key)
        if v is not None and _number(v, key) <= 0:
            raise ValueError(f"{key} must be positive")


def validate_question(
    *,
    qtype: QuestionType,
    question: str,
    marks: float,
    negative_marks: float,
    question_data: Any,
    solution: Any,
) -> None:
    """Raise ValueError with a user-facing message when the payload is invalid."""
    text = _text(question)
    if not text:
        raise ValueError("question text is required")
    if len(text) > MAX_QUESTION_LENGTH:
        raise ValueError("question text is too long")
    if float(marks) <= 0:
        raise ValueError("marks must be greater than 0")
    if float(negative_marks) < 0:
        raise ValueError("negative marks cannot be less than 0")

    data = unwrap(question_data) or {}
    sol = unwrap(solution) or {}
    if not isinstance(data, dict) or not isinstance(sol, dict):
        raise ValueError("question data and solution must be objects")

    if qtype in (QuestionType.MCQ, QuestionType.MMCQ):
        _validate_choice(qtype, data, sol)
    elif qtype == QuestionType.TRUE_FALSE:
        _validate_true_false(sol)
    elif qtype == QuestionType.FILL_THE_BLANK:
        _validate_fill_the_blank(data, sol)
    elif qtype == QuestionType.DESCRIPTIVE:
        _validate_descriptive(data)
    elif qtype == QuestionType.MATCHING:
        _validate_matching(data, sol)
    elif qtype == QuestionType.CODING:
        _validate_coding(data)
    elif qtype == QuestionType.FILE_UPLOAD:
        _validate_file_upload(data)


def staff_view(question: Question) -> dict[str, Any]:
    return {
        "id": str(question.id),
        "type": question.type.value,
        "question": question.question,
        "marks": float(question.marks),
        "negative_marks": float(question.negative_marks or 0),
        "difficulty": question.difficulty.value if question.difficulty else None,
        "course_outcome": question.course_outcome.value if question.course_outcome else None,
        "bloom_level": question.bloom_level.value if question.bloom_level else None,
        "question_data": unwrap(question.question_data),
        "solution": unwrap(question.solution),
        "explanation": question.explanation,
    }


def student_view(question: Question, *, shuffle_seed: str | None = None) -> dict[str, Any]:
    """Question as shown during an exam, with every solution detail removed."""
    data = copy.deepcopy(unwrap(question.question_data)) or {}
    out: dict[str, Any] = {
        "id": str(question.id),
        "type": question.type.value,
        "question": question.question,
        "marks": float(question.marks),
        "negative_marks": float(question.negative_marks or 0),
        "difficulty": question.difficulty.value if question.difficulty else None,
        "course_outcome": question.course_outcome.value if question.course_outcome else None,
        "bloom_level": question.bloom_level.value if question.bloom_level else None,
    }

    qtype = question.type
    if qtype in (QuestionType.MCQ, QuestionType.MMCQ):
        options = [{k: v for k, v in o.items() if k != "isCorrect"} for o in _options(data)]
        options.sort(key=lambda o: int(o.get("orderIndex") or 0))
        if shuffle_seed:
            random.Random(f"{shuffle_seed}:{question.id}").shuffle(options)
        out["question_data"] = {"options": options}
    elif qtype == QuestionType.FILL_THE_BLANK:
        config = data.get("config") or {}
        sol_answers = _blank_keys((unwrap(question.solution) or {}).get("acceptableAnswers"))
        cfg_answers = _blank_keys(config.get("acceptableAnswers"))
        blank_count = int(config.get("blankCount") or 0)
        blank_types = {}
        for idx in range(blank_count):
            entry = sol_answers.get(str(idx)) or cfg_answers.get(str(idx)) or {}
            blank_types[str(idx)] = str(entry.get("type") or "TEXT").upper()
        out["blank_config"] = {
            "blankCount": blank_count,
            "blankWeights": _blank_keys(config.get("blankWeights")),
            "blankTypes": blank_types,
            "evaluationType": str(config.get("evaluationType") or "NORMAL").upper(),
        }
    elif qtype == QuestionType.DESCRIPTIVE:
        config = data.get("config") or {}
        out["descriptive_config"] = {"minWords": config.get("minWords"), "maxWords": config.get("maxWords")}
    elif qtype == QuestionType.MATCHING:
        options = [
            {"id": o.get("id"), "isLeft": bool(o.get("isLeft")), "text": o.get("text"), "orderIndex": o.get("orderIndex")}
            for o in _options(data)
        ]
        if shuffle_seed:
            random.Random(f"{shuffle_seed}:{question.id}").shuffle(options)
        out["options"] = options
    elif qtype == QuestionType.CODING:
        config = data.get("config") or {}
        out["coding_config"] = {
            "language": config.get("language") or "PYTHON",
            "templateCode": config.get("templateCode"),
            "boilerplateCode": config.get("boilerplateCode"),
            "timeLimitMs": config.get("timeLimitMs"),
            "memoryLimitMb": config.get("memoryLimitMb"),
        }
        out["test_cases"] = [
            {
                "id": tc.get("id"),
                "input": tc.get("input"),
                "visibility": "VISIBLE",
                "marksWeightage": tc.get("marksWeightage"),
                "orderIndex": tc.get("orderIndex"),
            }
            for tc in (data.get("testCases") or [])
            if isinstance(tc, dict) and str(tc.get("visibility") or "").upper() == "VISIBLE"
        ]
    elif qtype == QuestionType.FILE_UPLOAD:
        config = data.get("config") or {}
        out["file_upload_config"] = {
            "allowedFileTypes": config.get("allowedFileTypes"),
            "maxFileSizeInMB": config.get("maxFileSizeInMB"),
            "maxFiles": config.get("maxFiles"),
        }
        if data.get("attachedFiles"):
            out["attached_files"] = data.get("attachedFiles")

    return out
