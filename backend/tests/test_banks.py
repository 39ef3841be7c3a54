import uuid

import pytest
from sqlalchemy import select

from evalify.models.question import Question
from evalify.models.user import UserRole


def _create_bank(client, headers, name="Algorithms"):
    r = client.post("/banks", json={"name": name, "course_code": "cs201", "semester": 3}, headers=headers)
    assert r.status_code == 200
    return r.json()["id"]


def test_owner_sees_own_bank(client, make_user, headers_for):
    owner = make_user(UserRole.FACULTY)
    headers = headers_for(owner)
    bank_id = _create_bank(client, headers)

    r = client.get(f"/banks/{bank_id}", headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["access_level"] == "OWNER"
    assert body["course_code"] == "CS201"

    items = client.get("/banks", headers=headers).json()["items"]
    assert [b["id"] for b in items] == [bank_id]


def test_unshared_bank_is_hidden(client, make_user, headers_for):
    owner = make_user(UserRole.FACULTY)
    stranger = make_user(UserRole.FACULTY)
    bank_id = _create_bank(client, headers_for(owner))

    assert client.get(f"/banks/{bank_id}", headers=headers_for(stranger)).status_code == 404
    assert client.get("/banks", headers=headers_for(stranger)).json()["total"] == 0


def test_sharing_levels(client, make_user, headers_for, mcq):
    owner = make_user(UserRole.FACULTY)
    reader = make_user(UserRole.MANAGER)
    student = make_user(UserRole.STUDENT)
    headers = headers_for(owner)
    bank_id = _create_bank(client, headers)

    r = client.post(f"/banks/{bank_id}/shared", json={"user_id": str(reader.id), "access_level": "OWNER"}, headers=headers)
    assert r.status_code == 400
    r = client.post(f"/banks/{bank_id}/shared", json={"user_id": str(student.id)}, headers=headers)
    assert r.status_code == 400
    r = client.post(f"/banks/{bank_id}/shared", json={"user_id": str(owner.id)}, headers=headers)
    assert r.json() == {"ok": True, "shared": False}

    r = client.post(f"/banks/{bank_id}/shared", json={"user_id": str(reader.id)}, headers=headers)
    assert r.json() == {"ok": True, "shared": True}
    r = client.post(f"/banks/{bank_id}/shared", json={"user_id": str(reader.id)}, headers=headers)
    assert r.json() == {"ok": True, "shared": False}

    reader_headers = headers_for(reader)
    assert client.get(f"/banks/{bank_id}", headers=reader_headers).json()["access_level"] == "READ"
    r = client.post(f"/banks/{bank_id}/questions", json=mcq(), headers=reader_headers)
    assert r.status_code == 403
    assert client.get(f"/banks/{bank_id}/shared", headers=reader_headers).status_code == 403

    r = client.patch(f"/banks/{bank_id}/shared/{reader.id}", json={"access_level": "WRITE"}, headers=headers)
    assert r.status_code == 200
    r = client.post(f"/banks/{bank_id}/questions", json=mcq(), headers=reader_headers)
    assert r.status_code == 200
    assert client.delete(f"/banks/{bank_id}", headers=reader_headers).status_code == 403

    shared = client.get(f"/banks/{bank_id}/shared", headers=headers).json()["items"]
    assert [(s["id"], s["access_level"]) for s in shared] == [(str(reader.id), "WRITE")]

    assert client.delete(f"/banks/{bank_id}/shared/{reader.id}", headers=headers).status_code == 200
    assert client.get(f"/banks/{bank_id}", headers=reader_headers).status_code == 404


def test_question_validation(client, make_user, headers_for, mcq):
    owner = make_user(UserRole.FACULTY)
    headers = headers_for(owner)
    bank_id = _create_bank(client, headers)

    bad = mcq()
    bad["solution"] = {"correctOptions": [{"id": "a"}, {"id": "b"}]}
    r = client.post(f"/banks/{bank_id}/questions", json=bad, headers=headers)
    assert r.status_code == 400
    assert "MMCQ" in r.json()["error_message"]

    bad = mcq()
    bad["marks"] = 0
    assert client.post(f"/banks/{bank_id}/questions", json=bad, headers=headers).status_code == 400

    fitb = {
        "type": "FILL_THE_BLANK",
        "question": "___ is the capital of Japan",
        "marks": 1,
        "question_data": {"config": {"blankCount": 1, "evaluationType": "NORMAL"}},
        "solution": {"acceptableAnswers": {"0": {"answers": ["Tokyo"], "type": "TEXT"}}},
    }
    assert client.post(f"/banks/{bank_id}/questions", json=fitb, headers=headers).status_code == 200

    fitb["solution"] = {"acceptableAnswers": {}}
    assert client.post(f"/banks/{bank_id}/questions", json=fitb, headers=headers).status_code == 400


_FITB_DATA = {"config": {"blankCount": 1, "evaluationType": "NORMAL"}}
_FITB_SOLUTION = {"acceptableAnswers": {"0": {"answers": ["Tokyo"], "type": "TEXT"}}}
_MATCHING_DATA = {
    "options": [
        {"id": "l1", "optionText": "TCP", "isLeft": True},
        {"id": "r1", "optionText": "Reliable", "isLeft": False},
    ]
}


@pytest.mark.parametrize(
    "qtype,question_data,solution",
    [
        ("FILL_THE_BLANK", _FITB_DATA, {"acceptableAnswers": [{"answers": ["Tokyo"]}]}),
        ("FILL_THE_BLANK", {"config": {"blankCount": 1, "blankWeights": [1]}}, _FITB_SOLUTION),
        ("FILL_THE_BLANK", {"config": {"blankCount": 1, "blankWeights": {"0": "heavy"}}}, _FITB_SOLUTION),
        ("FILL_THE_BLANK", {"config": "blanks"}, _FITB_SOLUTION),
        ("FILL_THE_BLANK", _FITB_DATA, {"acceptableAnswers": {"0": {"answers": "Tokyo"}}}),
        ("DESCRIPTIVE", {"config": {"minWords": [1]}}, {}),
        ("DESCRIPTIVE", {"config": {"minWords": 10, "maxWords": {"n": 5}}}, {}),
        ("FILE_UPLOAD", {"config": "pdf"}, {}),
        ("FILE_UPLOAD", {"config": {"maxFiles": "many"}}, {}),
        ("MATCHING", _MATCHING_DATA, {"options": [{"id": "l1", "matchPairIds": 7}]}),
        ("MATCHING", _MATCHING_DATA, {"options": "l1"}),
        ("CODING", {"config": {"language": "python"}, "testCases": 3}, {}),
        ("MCQ", {"options": [{"id": "a", "optionText": "x"}, {"id": "b", "optionText": "y"}]}, {"correctOptions": 1}),
    ],
)
def test_malformed_question_payload_is_rejected(client, make_user, headers_for, qtype, question_data, solution):
    headers = headers_for(make_user(UserRole.FACULTY))
    bank_id = _create_bank(client, headers)
    body = {"type": qtype, "question": "Malformed", "marks": 2, "question_data": question_data, "solution": solution}

    r = client.post(f"/banks/{bank_id}/questions", json=body, headers=headers)
    assert r.status_code == 400
    assert r.json()["ok"] is False


def test_topics_and_question_filters(client, make_user, headers_for, mcq):
    owner = make_user(UserRole.FACULTY)
    headers = headers_for(owner)
    bank_id = _create_bank(client, headers)
    other_bank = _create_bank(client, headers, name="Other")

    topic_id = client.post(f"/banks/{bank_id}/topics", json={"name": "Sorting"}, headers=headers).json()["id"]
    foreign_topic = client.post(f"/banks/{other_bank}/topics", json={"name": "Graphs"}, headers=headers).json()["id"]

    payload = mcq()
    payload["topic_ids"] = [foreign_topic]
    assert client.post(f"/banks/{bank_id}/questions", json=payload, headers=headers).status_code == 400

    payload["topic_ids"] = [topic_id]
    tagged = client.post(f"/banks/{bank_id}/questions", json=payload, headers=headers).json()["id"]
    untagged = client.post(f"/banks/{bank_id}/questions", json=mcq(), headers=headers).json()["id"]

    r = client.get(f"/banks/{bank_id}/questions", params={"topic_id": topic_id}, headers=headers)
    assert [q["id"] for q in r.json()["items"]] == [tagged]

    r = client.get(f"/banks/{bank_id}/questions", headers=headers)
    body = r.json()
    assert body["total"] == 2
    assert [q["id"] for q in body["items"]] == [tagged, untagged]
    assert [q["order_index"] for q in body["items"]] == [0, 1]

    topics = client.get(f"/banks/{bank_id}/topics", headers=headers).json()["items"]
    assert topics == [{"id": topic_id, "name": "Sorting", "question_count": 1}]


def test_update_and_delete_question(client, db, make_user, headers_for, mcq):
    owner = make_user(UserRole.FACULTY)
    headers = headers_for(owner)
    bank_id = _create_bank(client, headers)
    qid = client.post(f"/banks/{bank_id}/questions", json=mcq(), headers=headers).json()["id"]

    r = client.patch(f"/banks/{bank_id}/questions/{qid}", json={"marks": 5, "difficulty": "HARD"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["marks"] == 5.0
    assert r.json()["difficulty"] == "HARD"

    r = client.patch(
        f"/banks/{bank_id}/questions/{qid}",
        json={"solution": {"correctOptions": [{"id": "zzz"}]}},
        headers=headers,
    )
    assert r.status_code == 400

    r = client.get(f"/banks/{bank_id}/questions/{qid}", headers=headers)
    assert r.json()["solution"] == {"correctOptions": [{"id": "b", "isCorrect": True}]}

    assert client.delete(f"/banks/{bank_id}/questions/{qid}", headers=headers).status_code == 200
    assert client.get(f"/banks/{bank_id}/questions/{qid}", headers=headers).status_code == 404
    db.expire_all()
    assert db.scalar(select(Question).where(Question.id == uuid.UUID(qid))) is None


def test_delete_bank(client, make_user, headers_for, mcq):
    owner = make_user(UserRole.FACULTY)
    headers = headers_for(owner)
    bank_id = _create_bank(client, headers)
    client.post(f"/banks/{bank_id}/topics", json={"name": "T"}, headers=headers)
    client.post(f"/banks/{bank_id}/questions", json=mcq(), headers=headers)

    assert client.delete(f"/banks/{bank_id}", headers=headers).status_code == 200
    assert client.get(f"/banks/{bank_id}", headers=headers).status_code == 404


def test_user_search_lists_staff_only(client, make_user, headers_for):
    owner = make_user(UserRole.FACULTY)
    marker = "searchable"
    fac = make_user(UserRole.FACULTY, name=f"{marker} faculty")
    make_user(UserRole.STUDENT, name=f"{marker} student")

    r = client.get("/banks/users/search", params={"q": marker}, headers=headers_for(owner))
    assert r.status_code == 200
    ids = [u["id"] for u in r.json()["items"]]
    assert str(fac.id) in ids
    assert all(u["role"] != "STUDENT" for u in r.json()["items"])
