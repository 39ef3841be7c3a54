from datetime import timedelta

from sqlalchemy import select

from evalify.core.timeutil import utcnow
from evalify.models.quiz import QuizQuestion
from evalify.models.user import UserRole
from evalify.services.quizzes import load_quiz_questions


def _quiz_body(course_id: str, **extra) -> dict:
    now = utcnow()
    body = {
        "name": "Midterm",
        "start_time": (now + timedelta(hours=1)).isoformat(),
        "end_time": (now + timedelta(hours=3)).isoformat(),
        "duration_minutes": 60,
        "course_ids": [course_id],
    }
    body.update(extra)
    return body


def _setup(make_user, make_course, headers_for):
    faculty = make_user(UserRole.FACULTY)
    course = make_course(instructor=faculty)
    return faculty, course, headers_for(faculty)


def test_create_quiz_requires_managed_course(client, make_user, make_course, headers_for):
    faculty = make_user(UserRole.FACULTY)
    course = make_course()
    r = client.post("/quizzes", json=_quiz_body(str(course.id)), headers=headers_for(faculty))
    assert r.status_code == 403


def test_create_quiz_validates_window_and_settings(client, make_user, make_course, headers_for):
    _, course, headers = _setup(make_user, make_course, headers_for)
    now = utcnow()

    body = _quiz_body(str(course.id), end_time=(now - timedelta(hours=1)).isoformat())
    assert client.post("/quizzes", json=body, headers=headers).status_code == 400

    body = _quiz_body(
        str(course.id),
        evaluation_settings={"mcq_global_negative_mark": 1, "mcq_global_negative_percent": 25},
    )
    assert client.post("/quizzes", json=body, headers=headers).status_code == 400

    assert client.post("/quizzes", json=_quiz_body(str(course.id), course_ids=[]), headers=headers).status_code == 422


def test_create_and_update_quiz(client, make_user, make_course, headers_for):
    faculty, course, headers = _setup(make_user, make_course, headers_for)
    student = make_user(UserRole.STUDENT)
    other = make_user(UserRole.FACULTY)

    body = _quiz_body(str(course.id), student_ids=[str(student.id)], tags=["Unit 1", "unit 1", "Hard"], password="pw")
    r = client.post("/quizzes", json=body, headers=headers)
    assert r.status_code == 200
    quiz_id = r.json()["id"]

    r = client.get(f"/quizzes/{quiz_id}", headers=headers)
    detail = r.json()
    assert detail["course_ids"] == [str(course.id)]
    assert detail["student_ids"] == [str(student.id)]
    assert sorted(detail["tags"]) == ["Hard", "Unit 1"]
    assert detail["has_password"] is True
    assert detail["evaluation_settings"]["mcq_global_partial_marking"] is False

    assert client.get(f"/quizzes/{quiz_id}", headers=headers_for(other)).status_code == 403

    r = client.patch(f"/quizzes/{quiz_id}", json={"name": "Final", "shuffle_questions": True, "password": None}, headers=headers)
    assert r.status_code == 200
    assert r.json()["name"] == "Final"
    assert r.json()["shuffle_questions"] is True
    assert r.json()["has_password"] is False

    r = client.patch(f"/quizzes/{quiz_id}", json={"student_ids": [str(other.id)]}, headers=headers)
    assert r.status_code == 400

    listed = client.get("/quizzes", headers=headers).json()["items"]
    assert [q["id"] for q in listed] == [quiz_id]

    tags = client.get("/quizzes/tags", params={"q": "unit"}, headers=headers).json()["items"]
    assert "Unit 1" in [t["name"] for t in tags]


def test_evaluation_settings_roundtrip(client, make_user, make_course, headers_for):
    _, course, headers = _setup(make_user, make_course, headers_for)
    quiz_id = client.post("/quizzes", json=_quiz_body(str(course.id)), headers=headers).json()["id"]

    r = client.put(
        f"/quizzes/{quiz_id}/evaluation-settings",
        json={"mcq_global_partial_marking": True, "mcq_global_negative_percent": 25},
        headers=headers,
    )
    assert r.status_code == 200
    got = client.get(f"/quizzes/{quiz_id}/evaluation-settings", headers=headers).json()
    assert got["mcq_global_partial_marking"] is True
    assert got["mcq_global_negative_percent"] == 25


def test_publish_requires_questions(client, make_user, make_course, headers_for, mcq):
    _, course, headers = _setup(make_user, make_course, headers_for)
    quiz_id = client.post("/quizzes", json=_quiz_body(str(course.id)), headers=headers).json()["id"]

    assert client.post(f"/quizzes/{quiz_id}/publish", json={"publish": True}, headers=headers).status_code == 400

    r = client.post(f"/quizzes/{quiz_id}/questions", json=mcq(), headers=headers)
    assert r.status_code == 200
    r = client.post(f"/quizzes/{quiz_id}/publish", json={"publish": True}, headers=headers)
    assert r.json() == {"ok": True, "publish_quiz": True}


def test_sections_and_question_ordering(client, make_user, make_course, headers_for, mcq):
    _, course, headers = _setup(make_user, make_course, headers_for)
    quiz_id = client.post("/quizzes", json=_quiz_body(str(course.id)), headers=headers).json()["id"]

    s1 = client.post(f"/quizzes/{quiz_id}/sections", json={"name": "Part A"}, headers=headers).json()
    s2 = client.post(f"/quizzes/{quiz_id}/sections", json={"name": "Part B"}, headers=headers).json()
    assert (s1["order_index"], s2["order_index"]) == (0, 1)

    def add(section_id):
        body = mcq()
        body["section_id"] = section_id
        r = client.post(f"/quizzes/{quiz_id}/questions", json=body, headers=headers)
        assert r.status_code == 200
        return r.json()["id"]

    a1 = add(s1["id"])
    a2 = add(s1["id"])
    b1 = add(s2["id"])
    loose = add(None)

    items = client.get(f"/quizzes/{quiz_id}/questions", headers=headers).json()
    assert [q["id"] for q in items["items"]] == [loose, a1, a2, b1]
    assert items["total_marks"] == 8.0

    r = client.put(
        f"/quizzes/{quiz_id}/sections/reorder",
        json={"items": [{"id": s1["id"], "order_index": 1}, {"id": s2["id"], "order_index": 0}]},
        headers=headers,
    )
    assert r.status_code == 200
    items = client.get(f"/quizzes/{quiz_id}/questions", headers=headers).json()["items"]
    assert [q["id"] for q in items] == [loose, b1, a1, a2]

    r = client.post(f"/quizzes/{quiz_id}/questions/{a2}/move", json={"section_id": s2["id"], "order_index": 0}, headers=headers)
    assert r.status_code == 200
    assert r.json()["section_id"] == s2["id"]
    items = client.get(f"/quizzes/{quiz_id}/questions", headers=headers).json()["items"]
    assert [q["id"] for q in items] == [loose, a2, b1, a1]

    r = client.put(
        f"/quizzes/{quiz_id}/sections/reorder",
        json={"items": [{"id": str(course.id), "order_index": 0}]},
        headers=headers,
    )
    assert r.status_code == 400

    assert client.delete(f"/quizzes/{quiz_id}/sections/{s2['id']}", headers=headers).status_code == 200
    items = client.get(f"/quizzes/{quiz_id}/questions", headers=headers).json()["items"]
    assert {q["id"] for q in items if q["section_id"] is None} == {loose, a2, b1}


def test_reorder_questions(client, make_user, make_course, headers_for, mcq):
    _, course, headers = _setup(make_user, make_course, headers_for)
    quiz_id = client.post("/quizzes", json=_quiz_body(str(course.id)), headers=headers).json()["id"]
    q1 = client.post(f"/quizzes/{quiz_id}/questions", json=mcq(), headers=headers).json()["id"]
    q2 = client.post(f"/quizzes/{quiz_id}/questions", json=mcq(), headers=headers).json()["id"]

    r = client.put(
        f"/quizzes/{quiz_id}/questions/reorder",
        json={"items": [{"id": q1, "order_index": 1}, {"id": q2, "order_index": 0}]},
        headers=headers,
    )
    assert r.status_code == 200
    items = client.get(f"/quizzes/{quiz_id}/questions", headers=headers).json()["items"]
    assert [q["id"] for q in items] == [q2, q1]


def test_add_from_bank_skips_duplicates(client, make_user, make_course, headers_for, mcq):
    faculty, course, headers = _setup(make_user, make_course, headers_for)
    bank_id = client.post("/banks", json={"name": "B"}, headers=headers).json()["id"]
    bq1 = client.post(f"/banks/{bank_id}/questions", json=mcq(), headers=headers).json()
    bq2 = client.post(f"/banks/{bank_id}/questions", json=mcq(), headers=headers).json()
    quiz_id = client.post("/quizzes", json=_quiz_body(str(course.id)), headers=headers).json()["id"]

    r = client.post(
        f"/quizzes/{quiz_id}/questions/from-bank",
        json={"bank_question_ids": [bq1["bank_question_id"]]},
        headers=headers,
    )
    assert r.json() == {"ok": True, "added": 1, "skipped": 0}

    r = client.post(
        f"/quizzes/{quiz_id}/questions/from-bank",
        json={"bank_question_ids": [bq1["bank_question_id"], bq2["bank_question_id"]]},
        headers=headers,
    )
    assert r.json() == {"ok": True, "added": 1, "skipped": 1}

    r = client.post(
        f"/quizzes/{quiz_id}/questions/from-bank",
        json={"bank_question_ids": [bq2["bank_question_id"]]},
        headers=headers,
    )
    assert r.status_code == 400

    items = client.get(f"/quizzes/{quiz_id}/questions", headers=headers).json()["items"]
    assert [q["id"] for q in items] == [bq1["id"], bq2["id"]]
    assert items[0]["bank_question_id"] == bq1["bank_question_id"]

    # Removing from the bank keeps the question in the quiz.
    assert client.delete(f"/banks/{bank_id}/questions/{bq1['id']}", headers=headers).status_code == 200
    items = client.get(f"/quizzes/{quiz_id}/questions", headers=headers).json()["items"]
    assert items[0]["id"] == bq1["id"]
    assert items[0]["bank_question_id"] is None


def test_add_from_unshared_bank_is_rejected(client, make_user, make_course, headers_for, mcq):
    _, course, headers = _setup(make_user, make_course, headers_for)
    stranger = make_user(UserRole.FACULTY)
    stranger_headers = headers_for(stranger)
    bank_id = client.post("/banks", json={"name": "Private"}, headers=stranger_headers).json()["id"]
    bq = client.post(f"/banks/{bank_id}/questions", json=mcq(), headers=stranger_headers).json()
    quiz_id = client.post("/quizzes", json=_quiz_body(str(course.id)), headers=headers).json()["id"]

    r = client.post(
        f"/quizzes/{quiz_id}/questions/from-bank",
        json={"bank_question_ids": [bq["bank_question_id"]]},
        headers=headers,
    )
    assert r.status_code == 404


def test_delete_quiz(client, make_user, make_course, headers_for, mcq):
    _, course, headers = _setup(make_user, make_course, headers_for)
    quiz_id = client.post("/quizzes", json=_quiz_body(str(course.id)), headers=headers).json()["id"]
    client.post(f"/quizzes/{quiz_id}/questions", json=mcq(), headers=headers)

    assert client.delete(f"/quizzes/{quiz_id}", headers=headers).status_code == 200
    assert client.get(f"/quizzes/{quiz_id}", headers=headers).status_code == 404


def test_semester_manager_can_manage_course_quizzes(client, db, make_user, make_course, headers_for):
    from evalify.models.academics import SemesterManager

    course = make_course()
    manager = make_user(UserRole.MANAGER)
    db.add(SemesterManager(semester_id=course.semester_id, user_id=manager.id))
    db.commit()

    r = client.post("/quizzes", json=_quiz_body(str(course.id)), headers=headers_for(manager))
    assert r.status_code == 200


def test_tied_order_indices_load_in_stable_order(db, make_user, make_quiz):
    quiz = make_quiz(creator=make_user(UserRole.FACULTY))
    links = db.scalars(select(QuizQuestion).where(QuizQuestion.quiz_id == quiz.id)).all()
    for link in links:
        link.order_index = 0
    db.commit()

    expected = sorted(str(link.id) for link in links)
    for _ in range(3):
        db.expire_all()
        assert [str(r.link.id) for r in load_quiz_questions(db, quiz.id)] == expected
