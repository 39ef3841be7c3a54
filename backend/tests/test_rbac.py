from evalify.models.user import UserRole


def test_student_cannot_access_admin_endpoints(client, make_user, headers_for):
    student = make_user(UserRole.STUDENT)
    r = client.get("/admin/users", headers=headers_for(student))
    assert r.status_code == 403
    assert r.json()["error_code"] == "forbidden"


def test_faculty_cannot_access_admin_endpoints(client, make_user, headers_for):
    faculty = make_user(UserRole.FACULTY)
    assert client.get("/admin/departments", headers=headers_for(faculty)).status_code == 403
    assert client.get("/admin/semesters", headers=headers_for(faculty)).status_code == 403


def test_student_cannot_manage_banks_or_quizzes(client, make_user, headers_for):
    student = make_user(UserRole.STUDENT)
    headers = headers_for(student)
    assert client.get("/banks", headers=headers).status_code == 403
    assert client.get("/quizzes", headers=headers).status_code == 403


def test_staff_cannot_take_exams(client, make_user, headers_for):
    faculty = make_user(UserRole.FACULTY)
    assert client.get("/exam/quizzes", headers=headers_for(faculty)).status_code == 403


def test_admin_passes_staff_gates(client, make_user, headers_for):
    admin = make_user(UserRole.ADMIN)
    headers = headers_for(admin)
    assert client.get("/banks", headers=headers).status_code == 200
    assert client.get("/quizzes", headers=headers).status_code == 200
    assert client.get("/admin/users", headers=headers).status_code == 200


def test_token_of_deleted_user_is_rejected(client, db, make_user, headers_for):
    student = make_user()
    headers = headers_for(student)
    db.delete(student)
    db.commit()
    assert client.get("/auth/me", headers=headers).status_code == 401


def test_garbage_token_is_rejected(client):
    r = client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
