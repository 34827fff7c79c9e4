"""End-to-end quiz lifecycle: authoring, assignment, taking, adaptive grading and reporting."""

from quizup.question_bank import GUIDANCE_UNAVAILABLE

MATH_ANSWERS = ["4", "4", "50", "25", "3.14"]


def _submit(client, headers, quiz_id, answers, time_taken=120):
    return client.post("/quiz/submit", json={"quiz_id": quiz_id, "answers": answers, "time_taken": time_taken}, headers=headers)


def test_create_quiz_uses_fallback_bank_and_auto_assigns(client, teacher, linked_student, math_quiz):
    _, teacher_headers = teacher
    detail = client.get(f"/teacher/quizzes/{math_quiz['id']}", headers=teacher_headers).json()["quiz"]
    assert detail["title"] == "Arithmetic warm-up"
    assert detail["number_of_questions"] == 5
    assert [q["correct_answer"] for q in detail["questions"]] == MATH_ANSWERS
    assert all(q["difficulty"] == "EASY" for q in detail["questions"])
    assert [s["username"] for s in detail["assigned_to"]] == ["arnold"]

    _, student_headers = linked_student
    assigned = client.get("/student/assigned-quizzes", headers=student_headers).json()["quizzes"]
    assert len(assigned) == 1
    assert assigned[0]["status"] == "Assigned"
    assert assigned[0]["total_questions"] == 5


def test_create_quiz_response_shape(client, teacher):
    _, headers = teacher
    resp = client.post(
        "/teacher/quizzes",
        json={"title": "Cells", "subject": "Biology", "level": "Medium", "duration": 10, "num_questions": 2},
        headers=headers,
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["used_ai"] is False
    assert body["number_of_questions"] == 2
    assert body["assigned_count"] == 0


def test_student_view_hides_answers(client, linked_student, math_quiz):
    _, headers = linked_student
    resp = client.get(f"/quiz/{math_quiz['id']}", headers=headers)
    assert resp.status_code == 200
    questions = resp.json()["questions"]
    assert len(questions) == 5
    assert all("correct_answer" not in q and "explanation" not in q for q in questions)
    assert questions[0]["options"] == ["3", "4", "5", "6"]


def test_submit_grades_adaptively_and_updates_questions(client, teacher, linked_student, math_quiz):
    _, student_headers = linked_student
    answers = ["4", "4", "50", "20", None]
    resp = _submit(client, student_headers, math_quiz["id"], answers)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["score"] == 60
    assert body["correct_answers"] == 3
    assert body["total_questions"] == 5
    assert body["time_taken"] == 120
    assert body["improvement_guidance"] == GUIDANCE_UNAVAILABLE
    outcomes = body["question_results"]
    assert [o["difficulty"] for o in outcomes] == ["EASY", "EASY", "MEDIUM", "MEDIUM", "EASY"]
    assert [o["is_correct"] for o in outcomes] == [True, True, True, False, False]
    assert outcomes[3]["user_answer"] == "20"
    assert outcomes[3]["correct_answer"] == "25"
    assert outcomes[4]["user_answer"] is None

    _, teacher_headers = teacher
    detail = client.get(f"/teacher/quizzes/{math_quiz['id']}", headers=teacher_headers).json()["quiz"]
    assert [q["difficulty"] for q in detail["questions"]] == ["EASY", "EASY", "MEDIUM", "MEDIUM", "EASY"]

    stored = client.get(f"/quiz/results/{body['id']}", headers=student_headers).json()
    assert stored["score"] == 60
    assert [o["difficulty"] for o in stored["question_results"]] == ["EASY", "EASY", "MEDIUM", "MEDIUM", "EASY"]
    assert stored["question_results"][0]["question"] == "What is 2 + 2?"


def test_all_correct_climbs_to_hard(client, linked_student, math_quiz):
    _, headers = linked_student
    body = _submit(client, headers, math_quiz["id"], MATH_ANSWERS).json()
    assert body["score"] == 100
    assert [o["difficulty"] for o in body["question_results"]] == ["EASY", "EASY", "MEDIUM", "HARD", "HARD"]


def test_second_submission_is_rejected(client, linked_student, math_quiz):
    _, headers = linked_student
    assert _submit(client, headers, math_quiz["id"], MATH_ANSWERS).status_code == 200
    resp = _submit(client, headers, math_quiz["id"], MATH_ANSWERS)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Quiz already submitted"


def test_answer_count_must_match(client, linked_student, math_quiz):
    _, headers = linked_student
    assert _submit(client, headers, math_quiz["id"], ["4", "4"]).status_code == 400
    # Nothing was stored, so a correct submission still goes through
    assert _submit(client, headers, math_quiz["id"], MATH_ANSWERS).status_code == 200


def test_unassigned_student_cannot_take_or_submit(client, make_user, math_quiz):
    _, outsider = make_user("phoebe")
    assert client.get(f"/quiz/{math_quiz['id']}", headers=outsider).status_code == 403
    resp = _submit(client, outsider, math_quiz["id"], MATH_ANSWERS)
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Quiz not assigned to user"


def test_unknown_quiz(client, student):
    _, headers = student
    assert client.get("/quiz/does-not-exist", headers=headers).status_code == 404
    assert _submit(client, headers, "does-not-exist", []).status_code == 404


def test_teacher_results_and_dashboards(client, teacher, linked_student, math_quiz):
    _, student_headers = linked_student
    _, teacher_headers = teacher
    _submit(client, student_headers, math_quiz["id"], ["4", "4", "50", "25", "3"])

    results = client.get(f"/teacher/quizzes/{math_quiz['id']}/results", headers=teacher_headers).json()
    assert len(results["results"]) == 1
    assert results["results"][0]["score"] == 80
    assert results["results"][0]["student"]["username"] == "arnold"

    listing = client.get("/teacher/quizzes", headers=teacher_headers).json()["quizzes"]
    assert listing[0]["assigned_count"] == 1
    assert listing[0]["completed_count"] == 1
    assert listing[0]["average_score"] == 80

    dash = client.get("/teacher/dashboard", headers=teacher_headers).json()
    assert dash["total_quizzes"] == 1
    assert dash["total_students"] == 1
    assert dash["total_submissions"] == 1
    assert dash["average_score"] == 80

    active = client.get("/teacher/active-students", headers=teacher_headers).json()
    assert active["active_students"] == 1
    assert active["students"][0]["username"] == "arnold"

    student_dash = client.get("/student/dashboard", headers=student_headers).json()
    assert student_dash["assigned"] == 1
    assert student_dash["completed"] == 1
    assert student_dash["pending"] == 0
    assert student_dash["best_score"] == 80
    assert student_dash["subjects"] == [{"subject": "Mathematics", "average_score": 80, "quizzes": 1}]

    assigned = client.get("/student/assigned-quizzes", headers=student_headers).json()["quizzes"]
    assert assigned[0]["status"] == "Completed"
    assert assigned[0]["score"] == 80


def test_result_visibility(client, make_user, linked_student, math_quiz):
    _, student_headers = linked_student
    result_id = _submit(client, student_headers, math_quiz["id"], MATH_ANSWERS).json()["id"]
    _, other_teacher = make_user("mr_ruhle", role="TEACHER")
    _, other_student = make_user("jyoti")
    assert client.get(f"/quiz/results/{result_id}", headers=other_teacher).status_code == 403
    assert client.get(f"/quiz/results/{result_id}", headers=other_student).status_code == 403
    mine = client.get("/quiz/results", params={"quiz_id": math_quiz["id"]}, headers=student_headers).json()
    assert [r["id"] for r in mine["results"]] == [result_id]


def test_leaderboard_ranks_students_by_average(client, make_user, teacher, linked_student, math_quiz):
    _, teacher_headers = teacher
    _, second_headers = make_user("tim")
    client.post("/teacher/students", json={"username": "tim"}, headers=teacher_headers)
    client.post(f"/teacher/quizzes/{math_quiz['id']}/assign", json={"student_ids": [_me(client, second_headers)]}, headers=teacher_headers)

    _, first_headers = linked_student
    _submit(client, first_headers, math_quiz["id"], ["4", "x", "x", "x", "x"])
    _submit(client, second_headers, math_quiz["id"], MATH_ANSWERS)

    board = client.get("/quiz/leaderboard", headers=first_headers).json()["leaderboard"]
    assert [(row["rank"], row["average_score"]) for row in board] == [(1, 100), (2, 20)]
    assert board[1]["name"] == "Arnold Perlstein"


def _me(client, headers):
    return client.get("/auth/me", headers=headers).json()["id"]


def test_assign_requires_linked_students(client, make_user, teacher, math_quiz):
    _, teacher_headers = teacher
    stranger, _ = make_user("stranger")
    resp = client.post(f"/teacher/quizzes/{math_quiz['id']}/assign", json={"student_ids": [stranger["id"]]}, headers=teacher_headers)
    assert resp.status_code == 400


def test_assign_is_idempotent(client, teacher, linked_student, math_quiz):
    _, teacher_headers = teacher
    student_id = linked_student[0]["id"]
    resp = client.post(f"/teacher/quizzes/{math_quiz['id']}/assign", json={"student_ids": [student_id]}, headers=teacher_headers)
    assert resp.status_code == 200
    assert resp.json()["created"] == 0


def test_other_teacher_cannot_touch_quiz(client, make_user, math_quiz):
    _, other = make_user("mr_ruhle", role="TEACHER")
    assert client.get(f"/teacher/quizzes/{math_quiz['id']}", headers=other).status_code == 404
    assert client.delete(f"/teacher/quizzes/{math_quiz['id']}", headers=other).status_code == 404


def test_delete_quiz_cascades(client, teacher, linked_student, math_quiz):
    _, teacher_headers = teacher
    _, student_headers = linked_student
    _submit(client, student_headers, math_quiz["id"], MATH_ANSWERS)

    resp = client.delete(f"/teacher/quizzes/{math_quiz['id']}", headers=teacher_headers)
    assert resp.status_code == 200
    assert client.get("/student/assigned-quizzes", headers=student_headers).json()["quizzes"] == []
    assert client.get("/quiz/results", headers=student_headers).json()["results"] == []
    assert client.get("/teacher/quizzes", headers=teacher_headers).json()["quizzes"] == []


def test_manual_quiz_and_next_question(client, teacher, linked_student):
    _, teacher_headers = teacher
    resp = client.post(
        "/teacher/quizzes/manual",
        json={
            "title": "Capitals",
            "subject": "Geography",
            "duration": 5,
            "questions": [
                {"content": "Capital of France?", "options": ["Paris", "Rome"], "correct_answer": "Paris"},
                {"content": "Capital of Peru?", "options": ["Lima", "Quito"], "correct_answer": "Lima", "difficulty": "MEDIUM"},
                {"content": "Capital of Bhutan?", "options": ["Thimphu", "Paro"], "correct_answer": "Thimphu", "difficulty": "HARD"},
            ],
        },
        headers=teacher_headers,
    )
    assert resp.status_code == 201, resp.text
    quiz_id = resp.json()["quiz"]["id"]
    assert resp.json()["assigned_count"] == 1

    _, student_headers = linked_student
    questions = client.get(f"/quiz/{quiz_id}", headers=student_headers).json()["questions"]
    ids = [q["id"] for q in questions]

    def next_q(level, answered):
        body = client.post(
            f"/quiz/{quiz_id}/next-question",
            json={"current_difficulty": level, "answered_question_ids": answered},
            headers=student_headers,
        ).json()
        return body["question"]["id"] if body["question"] else None, body["finished"]

    assert next_q("MEDIUM", []) == (ids[1], False)
    assert next_q("HARD", [ids[2]]) == (ids[1], False)
    assert next_q("EASY", [ids[0]]) == (ids[1], False)
    assert next_q("EASY", ids) == (None, True)


def test_manual_quiz_validation(client, teacher):
    _, headers = teacher
    base = {"title": "Bad", "subject": "Geography", "duration": 5}
    bad_answer = {**base, "questions": [{"content": "Q?", "options": ["a", "b"], "correct_answer": "c"}]}
    assert client.post("/teacher/quizzes/manual", json=bad_answer, headers=headers).status_code == 400
    dup_options = {**base, "questions": [{"content": "Q?", "options": ["a", "a"], "correct_answer": "a"}]}
    assert client.post("/teacher/quizzes/manual", json=dup_options, headers=headers).status_code == 400


def test_practice_quiz_is_owned_and_takeable(client, student):
    _, headers = student
    resp = client.post("/quiz/practice", json={"subject": "Chemistry", "topic": "Atoms"}, headers=headers)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["title"] == "Chemistry Practice Quiz: Atoms"
    assert body["used_ai"] is False
    assert body["number_of_questions"] == 5

    quiz = client.get(f"/quiz/{body['quiz_id']}", headers=headers).json()
    assert quiz["level"] == "Practice"
    assert quiz["duration"] == 20
    submitted = _submit(client, headers, body["quiz_id"], ["H2O", "7", "6", "Nitrogen", "H2O"])
    assert submitted.status_code == 200
    assert submitted.json()["score"] == 100


def test_practice_quiz_requires_subject_and_topic(client, student):
    _, headers = student
    resp = client.post("/quiz/practice", json={"subject": "Chemistry", "topic": "  "}, headers=headers)
    assert resp.status_code == 400


def test_link_and_unlink_students(client, make_user, teacher, student):
    _, headers = teacher
    assert client.post("/teacher/students", json={"username": "nobody"}, headers=headers).status_code == 404
    make_user("mr_ruhle", role="TEACHER")
    assert client.post("/teacher/students", json={"username": "mr_ruhle"}, headers=headers).status_code == 400

    assert client.post("/teacher/students", json={"username": "arnold"}, headers=headers).status_code == 201
    assert client.post("/teacher/students", json={"username": "arnold"}, headers=headers).status_code == 201
    students = client.get("/teacher/students", headers=headers).json()["students"]
    assert [s["username"] for s in students] == ["arnold"]

    student_id = student[0]["id"]
    assert client.delete(f"/teacher/students/{student_id}", headers=headers).status_code == 200
    assert client.delete(f"/teacher/students/{student_id}", headers=headers).status_code == 404
    assert client.get("/teacher/students", headers=headers).json()["students"] == []


def test_health(client):
    assert client.get("/health").json() == {"status": "ok", "database": "ok"}
    assert client.get("/info").json()["gemini_configured"] is False
