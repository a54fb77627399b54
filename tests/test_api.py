from importlib.metadata import requires

from conftest import PASSWORD, create_course, register
from learnhub.backend.database import connection


def create_quiz(client, headers, course_id, **overrides):
    payload = {
        "course_id": course_id,
        "title": "Python basics quiz",
        "description": "Check the fundamentals",
        "type": "quiz",
        "module_index": 0,
        "passing_score": 60,
        "auto_grade": True,
        "show_correct_answers": False,
        "questions": [
            {
                "question": "Python is dynamically typed",
                "type": "true-false",
                "correct_answer": "true",
                "points": 10,
                "explanation": "Types are checked at runtime"
            }
        ]
    }
    payload.update(overrides)
    response = client.post("/api/assignments", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def create_essay(client, headers, course_id):
    response = client.post("/api/assignments", json={
        "course_id": course_id,
        "title": "Explain the GIL",
        "description": "Short essay",
        "type": "assignment",
        "module_index": 1,
        "passing_score": 50,
        "questions": [{"question": "What does the GIL protect?", "type": "essay", "points": 20}]
    }, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def enroll(client, headers, course_id):
    response = client.post(f"/api/courses/{course_id}/enroll", headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


# Health and auth
def test_health_endpoints(client):
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/api/health").json()["status"] == "healthy"
    assert client.get("/api/status").json()["database"]["status"] == "healthy"
    assert client.get("/api/status").json()["endpoints"]["tasks"] == "/tasks"


def test_database_module_exposes_session_lifecycle_only():
    assert sorted(connection.__all__) == [
        "check_database_health",
        "close_database_connections",
        "get_async_session",
        "get_db",
        "init_database",
    ]


def test_sqlalchemy_is_required_with_asyncio_extra():
    declared = [req.replace(" ", "") for req in requires("learnhub")]
    assert any(req.startswith("sqlalchemy[asyncio]>=2.0") for req in declared)


def test_register_login_and_profile(client):
    headers, user = register(client, "student", name="Robin")
    assert user["role"] == "student"

    response = client.post("/api/auth/login", json={"email": user["email"], "password": PASSWORD})
    assert response.status_code == 200
    assert response.json()["token_type"] == "bearer"

    me = client.get("/api/auth/me", headers=headers)
    assert me.json()["name"] == "Robin"

    updated = client.put("/api/auth/me", json={"university": "Open University"}, headers=headers)
    assert updated.json()["university"] == "Open University"


def test_auth_errors(client):
    headers, user = register(client, "student")

    duplicate = client.post("/api/auth/register", json={
        "name": "Again", "email": user["email"], "password": PASSWORD
    })
    assert duplicate.status_code == 400

    wrong = client.post("/api/auth/login", json={"email": user["email"], "password": "wrong-password"})
    assert wrong.status_code == 401

    admin = client.post("/api/auth/register", json={
        "name": "Sneaky", "email": "sneaky@example.com", "password": PASSWORD, "role": "admin"
    })
    assert admin.status_code == 400
    assert admin.json()["error"] == "VALIDATION_ERROR"

    missing = client.get("/api/auth/me")
    assert missing.status_code == 401
    assert missing.json()["message"] == "Not authorized, no token"

    garbage = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert garbage.status_code == 401


def test_change_password(client):
    headers, user = register(client, "student")

    rejected = client.put("/api/auth/change-password", json={
        "current_password": "nope-nope", "new_password": "another-secret"
    }, headers=headers)
    assert rejected.status_code == 401

    changed = client.put("/api/auth/change-password", json={
        "current_password": PASSWORD, "new_password": "another-secret"
    }, headers=headers)
    assert changed.status_code == 200

    login = client.post("/api/auth/login", json={"email": user["email"], "password": "another-secret"})
    assert login.status_code == 200


# Courses
def test_course_listing_filters_and_paginates(client, instructor):
    headers, _ = instructor
    create_course(client, headers, title="Intro to Python")
    create_course(client, headers, title="Advanced Python", difficulty="Advanced")
    create_course(client, headers, title="Color Theory", category="Design")

    page = client.get("/api/courses", params={"limit": 2}).json()
    assert page["total"] == 3
    assert page["total_pages"] == 2
    assert page["current_page"] == 1
    assert len(page["courses"]) == 2

    search = client.get("/api/courses", params={"search": "python"}).json()
    assert search["total"] == 2

    design = client.get("/api/courses", params={"category": "Design"}).json()
    assert [course["title"] for course in design["courses"]] == ["Color Theory"]

    ordered = client.get("/api/courses", params={"sort_by": "title", "sort_order": "asc"}).json()
    assert ordered["courses"][0]["title"] == "Advanced Python"


def test_course_permissions(client, course, student, admin):
    student_headers, _ = student
    other_headers, _ = register(client, "instructor")

    assert client.post("/api/courses", json={
        "title": "Nope", "description": "Nope", "category": "Other", "difficulty": "Beginner"
    }, headers=student_headers).status_code == 403

    assert client.put(
        f"/api/courses/{course['id']}", json={"title": "Hijacked"}, headers=other_headers
    ).status_code == 403

    admin_headers, _ = admin
    updated = client.put(f"/api/courses/{course['id']}", json={"title": "Renamed"}, headers=admin_headers)
    assert updated.json()["title"] == "Renamed"

    assert client.delete(f"/api/courses/{course['id']}", headers=student_headers).status_code == 403
    assert client.delete(f"/api/courses/{course['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/courses/{course['id']}").status_code == 404


def test_enrollment(client, course, student, instructor):
    headers, user = student

    body = enroll(client, headers, course["id"])
    assert body["message"] == "Successfully enrolled in course"
    assert body["progress"]["completion_percentage"] == 0

    again = client.post(f"/api/courses/{course['id']}/enroll", headers=headers)
    assert again.status_code == 400

    instructor_headers, _ = instructor
    assert client.post(f"/api/courses/{course['id']}/enroll", headers=instructor_headers).status_code == 403

    assert client.get(f"/api/courses/{course['id']}").json()["enrollment_count"] == 1

    enrolled = client.get("/api/courses/enrolled/my", headers=headers).json()
    assert [item["course"]["id"] for item in enrolled] == [course["id"]]


# Progress
def test_module_completion_and_certificate(client, course, student):
    headers, _ = student
    enroll(client, headers, course["id"])

    first = client.put(f"/api/progress/course/{course['id']}/module",
                       json={"module_index": 0, "time_spent": 30}, headers=headers)
    assert first.status_code == 200
    assert first.json()["progress"]["completion_percentage"] == 50
    assert first.json()["progress"]["is_completed"] is False

    repeat = client.put(f"/api/progress/course/{course['id']}/module",
                        json={"module_index": 0}, headers=headers)
    assert repeat.json()["progress"]["completion_percentage"] == 50

    out_of_range = client.put(f"/api/progress/course/{course['id']}/module",
                              json={"module_index": 5}, headers=headers)
    assert out_of_range.status_code == 400

    early = client.post(f"/api/achievements/certificates/course/{course['id']}", headers=headers)
    assert early.status_code == 404

    last = client.put(f"/api/progress/course/{course['id']}/module",
                      json={"module_index": 1, "time_spent": 30}, headers=headers).json()
    assert last["progress"]["completion_percentage"] == 100
    assert last["progress"]["is_completed"] is True
    assert "first_course" in [a["achievement_type"] for a in last["new_achievements"]]

    certificate = client.post(f"/api/achievements/certificates/course/{course['id']}", headers=headers)
    assert certificate.status_code == 200
    issued = certificate.json()
    assert issued["certificate_id"].startswith("CERT-")
    assert len(issued["verification_code"]) == 12

    duplicate = client.post(f"/api/achievements/certificates/course/{course['id']}", headers=headers)
    assert duplicate.status_code == 400

    verified = client.get("/api/achievements/verify", params={
        "certificateId": issued["certificate_id"],
        "verificationCode": issued["verification_code"]
    }).json()
    assert verified["valid"] is True
    assert verified["certificate"]["course"]["instructor"] == "Ada Instructor"
    assert verified["certificate"]["student"]["name"] == "Sam Student"

    forged = client.get("/api/achievements/verify", params={
        "certificateId": issued["certificate_id"], "verificationCode": "AAAAAAAAAAAA"
    })
    assert forged.status_code == 404

    progress = client.get(f"/api/progress/course/{course['id']}", headers=headers).json()
    assert progress["certificate_issued"] is True
    assert progress["total_time_spent"] == 60


def test_progress_requires_enrollment(client, course, student):
    headers, _ = student
    response = client.get(f"/api/progress/course/{course['id']}", headers=headers)
    assert response.status_code == 404
    assert response.json()["message"] == "No progress found for this course"


def test_bookmarks(client, course, student):
    headers, _ = student
    enroll(client, headers, course["id"])

    added = client.post(f"/api/progress/course/{course['id']}/bookmark",
                        json={"module_index": 1, "topic": "Decorators", "note": "revisit"}, headers=headers)
    assert added.status_code == 201
    bookmarks = added.json()["bookmarks"]
    assert [b["topic"] for b in bookmarks] == ["Decorators"]

    removed = client.delete(f"/api/progress/course/{course['id']}/bookmark/{bookmarks[0]['id']}", headers=headers)
    assert removed.json()["bookmarks"] == []

    missing = client.delete(f"/api/progress/course/{course['id']}/bookmark/{bookmarks[0]['id']}", headers=headers)
    assert missing.status_code == 404


def test_learning_sessions(client, course, student):
    headers, _ = student
    enroll(client, headers, course["id"])

    started = client.post(f"/api/progress/course/{course['id']}/session/start",
                          json={"module_index": 0}, headers=headers)
    assert started.status_code == 201
    session_id = started.json()["id"]
    assert started.json()["is_active"] is True

    other_headers, _ = register(client, "student")
    assert client.put(f"/api/progress/session/{session_id}/end", json={}, headers=other_headers).status_code == 403

    ended = client.put(f"/api/progress/session/{session_id}/end", json={
        "session_quality": "good",
        "activities": [{"type": "reading", "duration": 5}]
    }, headers=headers)
    assert ended.status_code == 200
    assert ended.json()["session"]["is_active"] is False
    assert ended.json()["session"]["session_quality"] == "good"

    assert client.put(f"/api/progress/session/{session_id}/end", json={}, headers=headers).status_code == 400

    bad_activity = client.post(f"/api/progress/course/{course['id']}/session/start", json={}, headers=headers).json()
    rejected = client.put(f"/api/progress/session/{bad_activity['id']}/end",
                          json={"activities": [{"type": "napping"}]}, headers=headers)
    assert rejected.status_code == 400

    analytics = client.get("/api/progress/analytics", params={"period": "7days"}, headers=headers).json()
    assert analytics["summary"]["courses_enrolled"] == 1
    assert len(analytics["sessions"]) == 2


# Assignments
def test_quiz_auto_grading_and_attempt_limit(client, course, instructor, student):
    instructor_headers, _ = instructor
    student_headers, _ = student
    quiz = create_quiz(client, instructor_headers, course["id"])
    assert quiz["total_points"] == 10

    hidden = client.get(f"/api/assignments/{quiz['id']}", headers=student_headers).json()
    assert "correct_answer" not in hidden["questions"][0]
    assert "explanation" not in hidden["questions"][0]

    listed = client.get(f"/api/assignments/course/{course['id']}", headers=student_headers).json()
    assert "correct_answer" not in listed[0]["questions"][0]

    not_enrolled = client.post(f"/api/assignments/{quiz['id']}/submit",
                               json={"answers": [{"answer": "True"}]}, headers=student_headers)
    assert not_enrolled.status_code == 404

    enroll(client, student_headers, course["id"])
    submitted = client.post(f"/api/assignments/{quiz['id']}/submit",
                            json={"answers": [{"answer": "True"}]}, headers=student_headers)
    assert submitted.status_code == 201
    body = submitted.json()
    assert body["status"] == "graded"
    assert body["score"] == 10
    assert body["percentage"] == 100
    assert body["passed"] is True

    revealed = client.get(f"/api/assignments/{quiz['id']}", headers=student_headers).json()
    assert revealed["questions"][0]["correct_answer"] == "true"

    second = client.post(f"/api/assignments/{quiz['id']}/submit",
                         json={"answers": [{"answer": "False"}]}, headers=student_headers)
    assert second.status_code == 400

    mine = client.get(f"/api/assignments/{quiz['id']}/submissions/my", headers=student_headers).json()
    assert [s["attempt_number"] for s in mine] == [1]

    stats = client.get(f"/api/assignments/{quiz['id']}/statistics", headers=instructor_headers).json()
    assert stats["mean"] == 100
    assert stats["total_submissions"] == 1

    grade = client.get(f"/api/assignments/course/{course['id']}/grade", headers=student_headers).json()
    assert grade["percentage"] == 100
    assert grade["letter_grade"] == "A+"
    assert grade["gpa"] == 4.0


def test_assignment_validation(client, course, instructor, student):
    instructor_headers, _ = instructor

    too_few_options = client.post("/api/assignments", json={
        "course_id": course["id"], "title": "MC", "description": "MC", "type": "quiz",
        "module_index": 0, "passing_score": 50,
        "questions": [{"question": "Pick one", "type": "multiple-choice", "options": ["A"], "correct_answer": "A"}]
    }, headers=instructor_headers)
    assert too_few_options.status_code == 400

    bad_module = client.post("/api/assignments", json={
        "course_id": course["id"], "title": "Late", "description": "Late", "type": "quiz",
        "module_index": 9, "passing_score": 50, "total_points": 10
    }, headers=instructor_headers)
    assert bad_module.status_code == 400

    outsider_headers, _ = register(client, "instructor")
    foreign = client.post("/api/assignments", json={
        "course_id": course["id"], "title": "Foreign", "description": "Foreign", "type": "quiz",
        "module_index": 0, "passing_score": 50, "total_points": 10
    }, headers=outsider_headers)
    assert foreign.status_code == 403


def test_manual_grading_drives_course_grade_and_excellence(client, course, instructor, student):
    instructor_headers, _ = instructor
    student_headers, _ = student
    enroll(client, student_headers, course["id"])

    quiz = create_quiz(client, instructor_headers, course["id"])
    essay = create_essay(client, instructor_headers, course["id"])

    client.post(f"/api/assignments/{quiz['id']}/submit",
                json={"answers": [{"answer": "true"}]}, headers=student_headers)
    pending = client.post(f"/api/assignments/{essay['id']}/submit",
                          json={"content": "It serialises bytecode execution"}, headers=student_headers).json()
    assert pending["status"] == "submitted"
    assert pending["score"] == 0

    instructor_view = client.get("/api/analytics/instructor", headers=instructor_headers).json()
    assert instructor_view["pending_grading"][0]["submission_id"] == pending["id"]

    assert client.put(f"/api/assignments/submissions/{pending['id']}/grade",
                      json={"score": 18}, headers=student_headers).status_code == 403
    assert client.put(f"/api/assignments/submissions/{pending['id']}/grade",
                      json={"score": 25}, headers=instructor_headers).status_code == 400

    graded = client.put(f"/api/assignments/submissions/{pending['id']}/grade", json={
        "feedback": "Clear and correct",
        "rubric_scores": [
            {"criterion": "Accuracy", "points_earned": 10, "max_points": 10},
            {"criterion": "Clarity", "points_earned": 8, "max_points": 10}
        ]
    }, headers=instructor_headers).json()
    assert graded["status"] == "graded"
    assert graded["score"] == 18
    assert graded["percentage"] == 90

    submissions = client.get(f"/api/assignments/{essay['id']}/submissions", headers=instructor_headers).json()
    assert submissions[0]["student_name"] == "Sam Student"

    grade = client.get(f"/api/assignments/course/{course['id']}/grade", headers=student_headers).json()
    assert grade["percentage"] == 95
    assert grade["letter_grade"] == "A"

    for module_index in (0, 1):
        result = client.put(f"/api/progress/course/{course['id']}/module",
                            json={"module_index": module_index}, headers=student_headers).json()
    awarded = [a["achievement_type"] for a in result["new_achievements"]]
    assert "first_course" in awarded
    assert "grade_excellence" in awarded


def test_assignment_update_and_delete(client, course, instructor, admin):
    instructor_headers, _ = instructor
    quiz = create_quiz(client, instructor_headers, course["id"])

    updated = client.put(f"/api/assignments/{quiz['id']}",
                         json={"title": "Renamed quiz", "max_attempts": 3}, headers=instructor_headers).json()
    assert updated["title"] == "Renamed quiz"
    assert updated["max_attempts"] == 3

    assert client.delete(f"/api/assignments/{quiz['id']}", headers=instructor_headers).status_code == 403

    admin_headers, _ = admin
    assert client.delete(f"/api/assignments/{quiz['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/assignments/{quiz['id']}", headers=instructor_headers).status_code == 404


# Achievements
def test_achievement_listing_sharing_and_leaderboard(client, course, student):
    headers, _ = student
    enroll(client, headers, course["id"])
    for module_index in (0, 1):
        client.put(f"/api/progress/course/{course['id']}/module",
                   json={"module_index": module_index}, headers=headers)

    mine = client.get("/api/achievements/my", headers=headers).json()
    assert [a["achievement_type"] for a in mine] == ["first_course"]
    assert mine[0]["course_title"] == "Intro to Python"

    other_headers, _ = register(client, "student")
    assert client.post(f"/api/achievements/{mine[0]['id']}/share", headers=other_headers).status_code == 403

    shared = client.post(f"/api/achievements/{mine[0]['id']}/share", headers=headers).json()
    assert shared["share_url"].startswith("/achievements/first_course/")

    board = client.get("/api/achievements/leaderboard", params={"type": "points"}).json()
    assert board["entries"][0]["total_points"] == 50
    assert board["entries"][0]["rank"] == 1

    streaks = client.get("/api/achievements/leaderboard", params={"type": "streak", "period": "week"})
    assert streaks.status_code == 200

    assert client.get("/api/achievements/leaderboard", params={"type": "karma"}).status_code == 400


# Analytics
def test_learner_analytics(client, course, instructor, student):
    instructor_headers, _ = instructor
    headers, _ = student
    enroll(client, headers, course["id"])
    create_quiz(client, instructor_headers, course["id"], due_date="2999-01-01T00:00:00")
    client.put(f"/api/progress/course/{course['id']}/module", json={"module_index": 0}, headers=headers)

    dashboard = client.get("/api/analytics/dashboard", headers=headers).json()
    assert dashboard["summary"]["total_courses"] == 1
    assert dashboard["summary"]["in_progress_courses"] == 1
    assert dashboard["upcoming_deadlines"][0]["title"] == "Python basics quiz"
    assert dashboard["streak"] == {"current_streak": 0, "longest_streak": 0}

    learning = client.get("/api/analytics/learning", params={"period": "week"}, headers=headers).json()
    assert learning["period"] == "week"
    assert learning["course_progress"][0]["completion_percentage"] == 50
    assert learning["performance"]["graded_submissions"] == 0


def test_instructor_and_system_analytics(client, course, instructor, student, admin):
    instructor_headers, _ = instructor
    student_headers, _ = student
    enroll(client, student_headers, course["id"])

    stats = client.get("/api/analytics/instructor", headers=instructor_headers).json()
    assert stats["summary"]["total_courses"] == 1
    assert stats["summary"]["total_students"] == 1
    assert stats["recent_enrollments"][0]["student_name"] == "Sam Student"

    assert client.get("/api/analytics/instructor", headers=student_headers).status_code == 403
    assert client.get("/api/analytics/system", headers=instructor_headers).status_code == 403

    admin_headers, _ = admin
    system = client.get("/api/analytics/system", headers=admin_headers).json()
    assert system["user_stats"]["student"] == 1
    assert system["user_stats"]["admin"] == 1
    assert system["course_stats"]["total_enrollments"] == 1
    assert system["category_distribution"] == {"Programming": 1}


# Learning tasks
def create_task(client, headers, **overrides):
    payload = {"title": "Learn joins", "category": "SQL", "estimated_time": 90}
    payload.update(overrides)
    response = client.post("/api/tasks", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_task_crud_and_ownership(client, student):
    headers, user = student
    task = create_task(client, headers, title="  Learn joins  ")
    assert task["title"] == "Learn joins"
    assert task["user_id"] == user["id"]
    assert task["difficulty"] == "Beginner"
    assert task["progress"] == 0
    assert task["completed"] is False

    assert client.post("/api/tasks", json={"title": " "}, headers=headers).status_code == 400
    assert client.get("/api/tasks").status_code == 401

    other_headers, _ = register(client, "instructor")
    assert client.get("/api/tasks", headers=other_headers).json() == []
    assert client.put(f"/api/tasks/{task['id']}", json={"notes": "mine now"},
                      headers=other_headers).status_code == 403
    assert client.delete(f"/api/tasks/{task['id']}", headers=other_headers).status_code == 403

    updated = client.put(f"/api/tasks/{task['id']}", json={"notes": "Use the sakila database"}, headers=headers)
    assert updated.status_code == 200
    assert updated.json()["task"]["notes"] == "Use the sakila database"
    assert updated.json()["new_achievements"] == []

    assert client.delete(f"/api/tasks/{task['id']}", headers=headers).json()["message"] == "Task deleted successfully"
    assert client.get("/api/tasks", headers=headers).json() == []
    assert client.put(f"/api/tasks/{task['id']}", json={"progress": 10}, headers=headers).status_code == 404


def test_task_time_accumulates_and_completion_awards_skills(client, student):
    headers, _ = student
    task = create_task(client, headers, skills_learned=["SQL", "Query tuning"])

    first = client.put(f"/api/tasks/{task['id']}", json={"progress": 40, "time_spent": 30}, headers=headers).json()
    assert first["task"]["time_spent"] == 30
    assert first["task"]["completed"] is False
    assert first["new_achievements"] == []

    done = client.put(f"/api/tasks/{task['id']}", json={"progress": 100, "time_spent": 45}, headers=headers).json()
    assert done["task"]["time_spent"] == 75
    assert done["task"]["completed"] is True
    assert sorted(a["criteria"]["skill_name"] for a in done["new_achievements"]) == ["Query tuning", "SQL"]
    assert {a["points"] for a in done["new_achievements"]} == {75}

    other = create_task(client, headers, title="Window functions", skills_learned=[" sql "])
    again = client.put(f"/api/tasks/{other['id']}", json={"completed": True}, headers=headers).json()
    assert again["new_achievements"] == []

    mine = client.get("/api/achievements/my", headers=headers).json()
    assert [a["achievement_type"] for a in mine] == ["skill_mastery", "skill_mastery"]

    assert client.put(f"/api/tasks/{task['id']}", json={"progress": 101}, headers=headers).status_code == 400


def test_task_category_listing_and_analytics(client, student):
    headers, _ = student
    joins = create_task(client, headers, title="Joins", category="SQL")
    create_task(client, headers, title="Indexes", category="SQL")
    create_task(client, headers, title="Decorators", category="Python")
    client.put(f"/api/tasks/{joins['id']}", json={"progress": 100, "time_spent": 60}, headers=headers)

    sql = client.get("/api/tasks/category/SQL", headers=headers).json()
    assert sorted(task["title"] for task in sql) == ["Indexes", "Joins"]
    assert client.get("/api/tasks/category/Rust", headers=headers).json() == []

    analytics = client.get("/api/tasks/analytics", headers=headers).json()
    assert analytics["total_tasks"] == 3
    assert analytics["completed_tasks"] == 1
    assert analytics["total_time_spent"] == 60
    assert analytics["average_progress"] == 33.33
    assert analytics["categories"]["SQL"] == {
        "total": 2, "completed": 1, "total_progress": 100, "time_spent": 60, "average_progress": 50.0
    }
    assert analytics["recent_activity"][0]["title"] == "Joins"
    assert len(analytics["recent_activity"]) == 3
