from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from evalify.core.cache import cache_delete, quiz_results_key
from evalify.models.question import Question, QuestionType
from evalify.models.quiz import Quiz, QuizEvaluationSettings
from evalify.models.response import EvaluationStatus, QuizResponse, SubmissionStatus
from evalify.services import question_data
from evalify.services.ollama import grade_descriptive_ollama
from evalify.services.quizzes import load_quiz_questions
from evalify.services.statistics import refresh_report


log = logging.getLogger(__name__)

CORRECT = "CORRECT"
PARTIAL = "PARTIAL"
INCORRECT = "INCORRECT"
UNANSWERED = "UNANSWERED"
PENDING = "PENDING"
REVIEW = "REVIEW"
LLM = "LLM"
MANUAL = "MANUAL"

SUBMITTED_STATUSES = (SubmissionStatus.SUBMITTED, SubmissionStatus.AUTO_SUBMITTED)

_EPS = 1e-9


@dataclass
class QuestionResult:
    score: float
    max_score: float
    status: str
    remarks: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MarkingScheme:
    partial_marking: bool = False
    negative_mark: float | None = None
    negative_percent: float | None = None
    llm_enabled: bool = False
    llm_model: str | None = None
    descriptive_prompt: str | None = None

    @classmethod
    def from_settings(cls, es: QuizEvaluationSettings | None) -> "MarkingScheme":
        if es is None:
            return cls()
        return cls(
            partial_marking=bool(es.mcq_global_partial_marking),
            negative_mark=es.mcq_global_negative_mark,
            negative_percent=es.mcq_global_negative_percent,
            llm_enabled=bool(es.llm_evaluation_enabled),
            llm_model=es.llm_model_name,
            descriptive_prompt=es.desc_llm_system_prompt,
        )


def penalty(question: Question, scheme: MarkingScheme) -> float:
    """Marks deducted for a wrong objective answer.

    A per-question negative mark wins over the quiz-wide fixed mark, which wins over
    the quiz-wide percentage.
    """
    marks = float(question.marks or 0)
    if float(question.negative_marks or 0) > 0:
        return float(question.negative_marks)
    if scheme.negative_mark is not None and float(scheme.negative_mark) > 0:
        return float(scheme.negative_mark)
    if scheme.negative_percent is not None and float(scheme.negative_percent) > 0:
        return marks * float(scheme.negative_percent) / 100.0
    return 0.0


def _is_blank(answer: Any) -> bool:
    if answer is None:
        return True
    if isinstance(answer, str):
        return not answer.strip()
    if isinstance(answer, (list, tuple, set, dict)):
        return len(answer) == 0
    return False


def _wrong(question: Question, scheme: MarkingScheme, marks: float) -> QuestionResult:
    return QuestionResult(score=-penalty(question, scheme), max_score=marks, status=INCORRECT)


def _score_mcq(question: Question, answer: Any, scheme: MarkingScheme) -> QuestionResult:
    marks = float(question.marks)
    correct = question_data.correct_option_ids(question.solution)
    chosen = answer[0] if isinstance(answer, list) and len(answer) == 1 else answer
    if str(chosen) in correct:
        return QuestionResult(score=marks, max_score=marks, status=CORRECT)
    return _wrong(question, scheme, marks)


def _score_mmcq(question: Question, answer: Any, scheme: MarkingScheme) -> QuestionResult:
    marks = float(question.marks)
    correct = question_data.correct_option_ids(question.solution)
    selected = {str(a) for a in (answer if isinstance(answer, (list, tuple, set)) else [answer])}

    if selected == correct:
        return QuestionResult(score=marks, max_score=marks, status=CORRECT)
    if not selected.issubset(correct) or not scheme.partial_marking:
        return _wrong(question, scheme, marks)

    options = {
        str(o.get("id")): o
        for o in (question_data.unwrap(question.question_data) or {}).get("options") or []
        if isinstance(o, dict)
    }
    weights = [options.get(cid, {}).get("marksWeightage") for cid in correct]
    if correct and all(w is not None for w in weights):
        score = sum(float(options[cid]["marksWeightage"]) for cid in selected)
    else:
        score = marks * len(selected) / len(correct)
    return QuestionResult(score=min(score, marks), max_score=marks, status=PARTIAL)


def _parse_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    s = str(value or "").strip().lower()
    if s == "true":
        return True
    if s == "false":
        return False
    return None


def _score_true_false(question: Question, answer: Any, scheme: MarkingScheme) -> QuestionResult:
    marks = float(question.marks)
    expected = (question_data.unwrap(question.solution) or {}).get("trueFalseAnswer")
    given = _parse_bool(answer)
    if given is not None and given == expected:
        return QuestionResult(score=marks, max_score=marks, status=CORRECT)
    return _wrong(question, scheme, marks)


def blank_matches(given: Any, accepted: list[Any], answer_type: str) -> bool:
    g = str(given if given is not None else "").strip()
    if not g:
        return False
    atype = str(answer_type or "TEXT").upper()
    values = [str(a).strip() for a in accepted if str(a).strip()]

    if atype == "NUMBER":
        try:
            gv = float(g)
        except ValueError:
            return False
        for a in values:
            try:
                if abs(float(a) - gv) <= _EPS:
                    return True
            except ValueError:
                continue
        return False
    if atype == "UPPERCASE":
        return g in {a.upper() for a in values}
    if atype == "LOWERCASE":
        return g in {a.lower() for a in values}
    return g.casefold() in {a.casefold() for a in values}


def _score_fill_the_blank(question: Question, answer: Any, scheme: MarkingScheme) -> QuestionResult:
    marks = float(question.marks)
    config = (question_data.unwrap(question.question_data) or {}).get("config") or {}
    blank_count = max(1, int(config.get("blankCount") or 1))
    eval_type = str(config.get("evaluationType") or "NORMAL").upper()
    weights = {str(k): v for k, v in (config.get("blankWeights") or {}).items()}
    accepted = {str(k): v for k, v in ((question_data.unwrap(question.solution) or {}).get("acceptableAnswers") or {}).items()}

    if isinstance(answer, list):
        given_map = {str(i): v for i, v in enumerate(answer)}
    elif isinstance(answer, dict):
        given_map = {str(k): v for k, v in answer.items()}
    else:
        given_map = {"0": answer}

    earned = 0.0
    n_correct = 0
    unmatched_non_empty = 0
    for idx in range(blank_count):
        key = str(idx)
        entry = accepted.get(key) or {}
        given = given_map.get(key)
        weight = float(weights[key]) if key in weights else marks / blank_count
        if blank_matches(given, entry.get("answers") or [], entry.get("type") or "TEXT"):
            earned += weight
            n_correct += 1
        elif not _is_blank(given):
            unmatched_non_empty += 1

    if n_correct == blank_count:
        return QuestionResult(score=marks, max_score=marks, status=CORRECT)
    if eval_type == "STRICT":
        return QuestionResult(score=0.0, max_score=marks, status=INCORRECT)

    score = min(earned, marks)
    status = PARTIAL if n_correct else INCORRECT
    remarks = None
    if eval_type == "HYBRID" and unmatched_non_empty:
        status = REVIEW
        remarks = f"{unmatched_non_empty} blank(s) need review"
    return QuestionResult(score=score, max_score=marks, status=status, remarks=remarks)


def _score_matching(question: Question, answer: Any, scheme: MarkingScheme) -> QuestionResult:
    marks = float(question.marks)
    pairs: dict[str, set[str]] = {}
    for item in (question_data.unwrap(question.solution) or {}).get("options") or []:
        if isinstance(item, dict) and item.get("id") is not None:
            pairs[str(item["id"])] = {str(x) for x in (item.get("matchPairIds") or [])}
    if not pairs:
        return QuestionResult(score=0.0, max_score=marks, status=PENDING, remarks="no matching key")

    given = answer if isinstance(answer, dict) else {}
    n_correct = 0
    for left_id, expected in pairs.items():
        raw = given.get(left_id)
        selected = {str(x) for x in (raw if isinstance(raw, (list, tuple, set)) else [raw] if raw is not None else [])}
        if selected == expected:
            n_correct += 1

    if n_correct == len(pairs):
        return QuestionResult(score=marks, max_score=marks, status=CORRECT)
    if scheme.partial_marking and n_correct:
        return QuestionResult(score=marks * n_correct / len(pairs), max_score=marks, status=PARTIAL)
    return QuestionResult(score=0.0, max_score=marks, status=INCORRECT)


def _score_descriptive(question: Question, answer: Any, scheme: MarkingScheme) -> QuestionResult:
    marks = float(question.marks)
    if not scheme.llm_enabled:
        return QuestionResult(score=0.0, max_score=marks, status=PENDING)

    solution = question_data.unwrap(question.solution) or {}
    grade = grade_descriptive_ollama(
        question=question.question,
        student_answer=str(answer),
        max_marks=marks,
        model_answer=solution.get("modelAnswer"),
        keywords=[str(k) for k in (solution.get("keywords") or [])],
        system_prompt=scheme.descriptive_prompt,
        model=scheme.llm_model,
    )
    if grade is None:
        return QuestionResult(score=0.0, max_score=marks, status=PENDING, remarks="llm grading unavailable")
    return QuestionResult(score=float(grade.score), max_score=marks, status=LLM, remarks=grade.feedback)


_SCORERS: dict[QuestionType, Callable[[Question, Any, MarkingScheme], QuestionResult]] = {
    QuestionType.MCQ: _score_mcq,
    QuestionType.MMCQ: _score_mmcq,
    QuestionType.TRUE_FALSE: _score_true_false,
    QuestionType.FILL_THE_BLANK: _score_fill_the_blank,
    QuestionType.MATCHING: _score_matching,
    QuestionType.DESCRIPTIVE: _score_descriptive,
}


def score_question(question: Question, answer: Any, scheme: MarkingScheme) -> QuestionResult:
    marks = float(question.marks)
    if _is_blank(answer):
        return QuestionResult(score=0.0, max_score=marks, status=UNANSWERED)

    scorer = _SCORERS.get(question.type)
    if scorer is None:
        # CODING and FILE_UPLOAD are graded by staff.
        return QuestionResult(score=0.0, max_score=marks, status=PENDING)
    return scorer(question, answer, scheme)


def student_answer(response_map: dict | None, question_id) -> Any:
    entry = (response_map or {}).get(str(question_id))
    if isinstance(entry, dict):
        return entry.get("studentAnswer")
    return None


def evaluate_response(
    *,
    questions: list[Question],
    response_map: dict | None,
    scheme: MarkingScheme,
    previous: dict | None = None,
) -> tuple[dict[str, dict[str, Any]], float, float]:
    """Score every question of one response.

    Manual overrides from a previous run are kept as they are.
    """
    results: dict[str, dict[str, Any]] = {}
    score = 0.0
    total = 0.0
    for q in questions:
        qid = str(q.id)
        total += float(q.marks)
        prior = (previous or {}).get(qid)
        if isinstance(prior, dict) and prior.get("status") == MANUAL:
            results[qid] = dict(prior)
        else:
            results[qid] = score_question(q, student_answer(response_map, q.id), scheme).as_dict()
        score += float(results[qid].get("score") or 0.0)
    return results, round(score, 4), round(total, 4)


def evaluate_quiz(
    db: Session,
    quiz_id: uuid.UUID,
    *,
    on_progress: Callable[[int, int], None] | None = None,
) -> dict[str, int]:
    quiz = db.scalar(select(Quiz).where(Quiz.id == quiz_id))
    if quiz is None:
        raise ValueError("quiz not found")

    scheme = MarkingScheme.from_settings(db.get(QuizEvaluationSettings, quiz.id))
    questions = [row.question for row in load_quiz_questions(db, quiz.id)]

    responses = db.scalars(
        select(QuizResponse).where(
            QuizResponse.quiz_id == quiz.id,
            QuizResponse.submission_status.in_(SUBMITTED_STATUSES),
        )
    ).all()

    evaluated = 0
    failed = 0
    for i, resp in enumerate(responses, start=1):
        try:
            results, score, total = evaluate_response(
                questions=questions,
                response_map=resp.response,
                scheme=scheme,
                previous=resp.evaluation_results,
            )
        except Exception:
            log.exception("evaluation failed quiz_id=%s response_id=%s", quiz.id, resp.id)
            resp.evaluation_status = EvaluationStatus.FAILED
            failed += 1
        else:
            resp.evaluation_results = results
            resp.score = score
            resp.total_score = total
            resp.evaluation_status = EvaluationStatus.EVALUATED
            evaluated += 1
        db.add(resp)
        if on_progress is not None:
            on_progress(i, len(responses))

    db.flush()
    refresh_report(db, quiz.id)
    db.commit()
    cache_delete(quiz_results_key(quiz.id))

    log.info("quiz evaluated quiz_id=%s evaluated=%s failed=%s", quiz.id, evaluated, failed)
    return {"evaluated": evaluated, "failed": failed, "total": len(responses)}


def apply_manual_score(
    db: Session,
    *,
    response: QuizResponse,
    question: Question,
    score: float,
    remarks: str | None,
) -> QuizResponse:
    marks = float(question.marks)
    if abs(float(score)) > marks + _EPS:
        raise ValueError("score must be within question marks")

    results = dict(response.evaluation_results or {})
    results[str(question.id)] = QuestionResult(
        score=float(score), max_score=marks, status=MANUAL, remarks=remarks
    ).as_dict()

    questions = [row.question for row in load_quiz_questions(db, response.quiz_id)]
    response.evaluation_results = results
    response.score = round(sum(float((results.get(str(q.id)) or {}).get("score") or 0.0) for q in questions), 4)
    response.total_score = round(sum(float(q.marks) for q in questions), 4)
    response.evaluation_status = EvaluationStatus.EVALUATED
    db.add(response)
    db.flush()
    refresh_report(db, response.quiz_id)
    db.commit()
    cache_delete(quiz_results_key(response.quiz_id))
    return response
