import asyncio
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import text

from conftest import ENROLLED_STUDENT, NOW, OTHER_STUDENT, build_questions, count_rows, make_token
from database import Database
from errors import AlreadySubmitted
from main import create_app
from services import attempts

DEADLINE = NOW + timedelta(hours=1)


async def _submission(db: Database, assignment_id: int):
    async with db.transaction() as session:
        res = await session.execute(
            text("SELECT status, score, submitted_at FROM assignment_submissions WHERE assignment_id = :aid"),
            {"aid": assignment_id},
        )
        return res.first()


@pytest.mark.asyncio
async def test_autosave_then_submit_scenario(client: AsyncClient, student_headers, create_assignment, clock):
    """Q1 answered correctly, the rest unanswered: 1 of 5"""
    assignment_id, questions = await create_assignment()
    answers = [{"question_id": questions[1], "selected": "B"}]

    clock.set(NOW + timedelta(minutes=5))
    saved = await client.post(
        f"/student/assignments/{assignment_id}/autosave", json={"answers": answers}, headers=student_headers
    )
    assert saved.status_code == 200
    assert saved.json()["last_saved_at"] == (NOW + timedelta(minutes=5)).isoformat()
    assert saved.json()["saved"] == 1
    assert saved.json()["skipped"] == 0

    submitted = await client.post(
        f"/student/assignments/{assignment_id}/submit", json={"answers": answers}, headers=student_headers
    )
    assert submitted.status_code == 200
    data = submitted.json()
    assert data["score"] == 20.0
    assert data["correct_count"] == 1
    assert data["total_q"] == 5


@pytest.mark.asyncio
async def test_submit_three_of_five(client: AsyncClient, student_headers, create_assignment):
    assignment_id, questions = await create_assignment()
    # Answer key is B, A, C, D, A
    answers = [
        {"question_id": questions[1], "selected": "B"},
        {"question_id": questions[2], "selected": "a"},
        {"question_id": questions[3], "selected": "C"},
        {"question_id": questions[4], "selected": "A"},
        {"question_id": questions[5], "selected": None},
    ]

    response = await client.post(
        f"/student/assignments/{assignment_id}/submit", json={"answers": answers}, headers=student_headers
    )

    assert response.status_code == 200
    data = response.json()
    assert (data["score"], data["correct_count"], data["total_q"]) == (60.0, 3, 5)


@pytest.mark.asyncio
async def test_score_ignores_marks_but_reports_them(client: AsyncClient, student_headers, create_assignment):
    """Score stays unweighted; marks are only reported"""
    assignment_id, questions = await create_assignment(questions=build_questions(marks=[4, 1, 1, 1, 1]))

    response = await client.post(
        f"/student/assignments/{assignment_id}/submit",
        json={"answers": [{"question_id": questions[1], "selected": "B"}]},
        headers=student_headers,
    )

    data = response.json()
    assert data["score"] == 20.0
    assert data["marks_awarded"] == 4.0
    assert data["marks_total"] == 8.0


@pytest.mark.asyncio
async def test_autosave_is_idempotent(client: AsyncClient, student_headers, create_assignment, database):
    assignment_id, questions = await create_assignment()
    url = f"/student/assignments/{assignment_id}/autosave"

    await client.post(url, json={"answers": [{"question_id": questions[2], "selected": "C"}]}, headers=student_headers)
    await client.post(url, json={"answers": [{"question_id": questions[2], "selected": "D"}]}, headers=student_headers)
    await client.post(url, json={"answers": [{"question_id": questions[2], "selected": "D"}]}, headers=student_headers)

    assert await count_rows(database, "assignment_submissions") == 1
    assert await count_rows(database, "assignment_answers") == 1
    detail = await client.get(f"/student/assignments/{assignment_id}", headers=student_headers)
    assert detail.json()["answers"] == {str(questions[2]): "D"}


@pytest.mark.asyncio
async def test_autosave_can_clear_an_answer(client: AsyncClient, student_headers, create_assignment):
    assignment_id, questions = await create_assignment()
    url = f"/student/assignments/{assignment_id}/autosave"

    await client.post(url, json={"answers": [{"question_id": questions[3], "selected": "A"}]}, headers=student_headers)
    await client.post(url, json={"answers": [{"question_id": questions[3], "selected": None}]}, headers=student_headers)

    detail = await client.get(f"/student/assignments/{assignment_id}", headers=student_headers)
    assert detail.json()["questions"][2]["selected"] is None


@pytest.mark.asyncio
async def test_autosave_reports_skipped_entries(client: AsyncClient, student_headers, create_assignment):
    assignment_id, questions = await create_assignment()

    response = await client.post(
        f"/student/assignments/{assignment_id}/autosave",
        json={"answers": [
            {"question_id": questions[1], "selected": "A"},
            {"question_id": "nope", "selected": "A"},
            {"question_id": 424242, "selected": "B"},
            {"question_id": questions[2], "selected": "Q"},
        ]},
        headers=student_headers,
    )

    assert response.status_code == 200
    assert response.json()["saved"] == 1
    assert response.json()["skipped"] == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("offset,expected_status", [(-1, 200), (0, 200), (1, 400)])
async def test_deadline_boundary(client: AsyncClient, student_headers, create_assignment, clock, offset, expected_status):
    assignment_id, questions = await create_assignment()
    answers = {"answers": [{"question_id": questions[1], "selected": "B"}]}
    clock.set(DEADLINE + timedelta(seconds=offset))

    autosave = await client.post(f"/student/assignments/{assignment_id}/autosave", json=answers, headers=student_headers)
    submit = await client.post(f"/student/assignments/{assignment_id}/submit", json=answers, headers=student_headers)

    assert autosave.status_code == expected_status
    assert submit.status_code == expected_status
    if expected_status == 400:
        assert autosave.json()["error"] == "deadline_passed"
        assert submit.json()["error"] == "deadline_passed"


@pytest.mark.asyncio
async def test_submit_after_deadline_changes_nothing(
    client: AsyncClient, student_headers, create_assignment, clock, database
):
    assignment_id, questions = await create_assignment()
    await client.post(
        f"/student/assignments/{assignment_id}/autosave",
        json={"answers": [{"question_id": questions[1], "selected": "B"}]},
        headers=student_headers,
    )
    clock.set(DEADLINE + timedelta(seconds=1))

    response = await client.post(f"/student/assignments/{assignment_id}/submit", json={}, headers=student_headers)

    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "deadline_passed"}
    status, score, submitted_at = await _submission(database, assignment_id)
    assert (status, score, submitted_at) == ("in_progress", None, None)


@pytest.mark.asyncio
async def test_second_submit_is_rejected(client: AsyncClient, student_headers, create_assignment, database):
    assignment_id, questions = await create_assignment()
    url = f"/student/assignments/{assignment_id}"

    first = await client.post(f"{url}/submit", json={"answers": [{"question_id": questions[1], "selected": "B"}]},
                              headers=student_headers)
    assert first.json()["score"] == 20.0

    again = await client.post(f"{url}/submit", json={"answers": [{"question_id": questions[2], "selected": "A"}]},
                              headers=student_headers)
    assert again.status_code == 409
    assert again.json()["error"] == "already_submitted"

    autosave = await client.post(f"{url}/autosave", json={"answers": [{"question_id": questions[1], "selected": "C"}]},
                                 headers=student_headers)
    assert autosave.status_code == 409

    status, score, _ = await _submission(database, assignment_id)
    assert (status, score) == ("submitted", 20.0)
    detail = await client.get(url, headers=student_headers)
    assert detail.json()["answers"] == {str(questions[1]): "B"}


@pytest.mark.asyncio
async def test_detail_hides_answer_key(client: AsyncClient, student_headers, create_assignment):
    assignment_id, _ = await create_assignment()

    response = await client.get(f"/student/assignments/{assignment_id}", headers=student_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["submission"] is None
    assert data["answers"] == {}
    assert data["assignment"]["status"] == "open"
    assert len(data["questions"]) == 5
    for q in data["questions"]:
        assert q["selected"] is None
        assert [o["label"] for o in q["options"]] == ["A", "B", "C", "D"]
        for option in q["options"]:
            assert set(option) == {"label", "text"}
    assert "is_correct" not in response.text


@pytest.mark.asyncio
async def test_list_assignments_statuses(client: AsyncClient, student_headers, create_assignment, clock):
    open_id, _ = await create_assignment(title="Open one", deadline=NOW + timedelta(days=2))
    draft_id, draft_q = await create_assignment(title="Drafted", deadline=NOW + timedelta(days=1))
    done_id, done_q = await create_assignment(title="Done", deadline=NOW + timedelta(hours=3))
    closed_id, _ = await create_assignment(title="Closed", deadline=NOW + timedelta(minutes=30))

    await client.post(f"/student/assignments/{draft_id}/autosave",
                      json={"answers": [{"question_id": draft_q[1], "selected": "A"}]}, headers=student_headers)
    await client.post(f"/student/assignments/{done_id}/submit",
                      json={"answers": [{"question_id": done_q[1], "selected": "B"}]}, headers=student_headers)
    clock.set(NOW + timedelta(hours=1))

    response = await client.get("/student/assignments", headers=student_headers)

    assert response.status_code == 200
    rows = response.json()["assignments"]
    assert [r["assignment_id"] for r in rows] == [open_id, draft_id, done_id, closed_id]
    statuses = {r["assignment_id"]: r["status"] for r in rows}
    assert statuses == {open_id: "open", draft_id: "in_progress", done_id: "submitted", closed_id: "closed"}
    done = next(r for r in rows if r["assignment_id"] == done_id)
    assert done["score"] == 20.0
    assert done["submitted_at"] == NOW.isoformat()


@pytest.mark.asyncio
async def test_list_only_covers_confirmed_enrollment(client: AsyncClient, create_assignment):
    await create_assignment()

    response = await client.get("/student/assignments", params={"student_id": OTHER_STUDENT})

    assert response.status_code == 200
    assert response.json()["assignments"] == []


@pytest.mark.asyncio
async def test_student_identity_resolution(client: AsyncClient, create_assignment):
    assignment_id, _ = await create_assignment()

    missing = await client.get(f"/student/assignments/{assignment_id}")
    assert missing.status_code == 400
    assert missing.json()["error"] == "student_id_required"

    by_query = await client.get(f"/student/assignments/{assignment_id}", params={"student_id": 1})
    assert by_query.status_code == 200

    token = make_token({"sub": "1", "role": "student"})
    by_token = await client.get("/student/assignments", headers={"Authorization": f"Bearer {token}"})
    assert by_token.status_code == 200
    assert len(by_token.json()["assignments"]) == 1


@pytest.mark.asyncio
async def test_unknown_assignment(client: AsyncClient, student_headers):
    for method, path in [
        ("GET", "/student/assignments/999"),
        ("POST", "/student/assignments/999/autosave"),
        ("POST", "/student/assignments/999/submit"),
    ]:
        response = await client.request(method, path, json={"answers": []}, headers=student_headers)
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    response = await client.post("/student/assignments/0/submit", json={}, headers=student_headers)
    assert response.status_code == 400
    assert response.json()["error"] == "assignment_id required"


@pytest.mark.asyncio
async def test_submit_publishes_to_assignment_channel(client: AsyncClient, student_headers, create_assignment, hub):
    assignment_id, questions = await create_assignment()
    queue = await hub.register(f"assignment-{assignment_id}")

    await client.post(
        f"/student/assignments/{assignment_id}/submit",
        json={"answers": [{"question_id": questions[1], "selected": "B"}]},
        headers=student_headers,
    )

    message = queue.get_nowait()
    assert message["event"] == "submission"
    assert message["data"]["student_id"] == 1
    assert message["data"]["score"] == 20.0


class BrokenHub:
    async def publish(self, channel, event, payload):
        raise RuntimeError("listener backend down")


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_submit(
    database, clock, professor_headers, student_headers
):
    from httpx import ASGITransport
    from conftest import build_payload

    app = create_app(database=database, notifier=BrokenHub(), clock=clock)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        created = await client.post("/assignments", json=build_payload(), headers=professor_headers)
        assert created.status_code == 201
        assignment_id = created.json()["assignment_id"]

        response = await client.post(f"/student/assignments/{assignment_id}/submit", json={}, headers=student_headers)

    assert response.status_code == 200
    assert response.json()["score"] == 0.0
    status, score, _ = await _submission(database, assignment_id)
    assert (status, score) == ("submitted", 0.0)


@pytest.mark.asyncio
async def test_answers_that_are_not_a_list_count_as_skipped(client: AsyncClient, student_headers, create_assignment):
    assignment_id, questions = await create_assignment()

    response = await client.post(
        f"/student/assignments/{assignment_id}/autosave",
        json={"answers": {"question_id": questions[1], "selected": "B"}},
        headers=student_headers,
    )

    assert response.status_code == 200
    assert (response.json()["saved"], response.json()["skipped"]) == (0, 1)

    submitted = await client.post(
        f"/student/assignments/{assignment_id}/submit", json={"answers": "B"}, headers=student_headers
    )
    assert submitted.json()["skipped"] == 1
    assert submitted.json()["score"] == 0.0


@pytest.mark.asyncio
async def test_unknown_student_is_not_found(client: AsyncClient, create_assignment, database):
    assignment_id, questions = await create_assignment()
    answers = {"answers": [{"question_id": questions[1], "selected": "B"}]}

    for action in ("autosave", "submit"):
        response = await client.post(
            f"/student/assignments/{assignment_id}/{action}", json=answers, headers={"x-student-id": "999"}
        )
        assert response.status_code == 404
        assert response.json()["error"] == "student_not_found"

    assert await count_rows(database, "assignment_submissions") == 0
    assert await count_rows(database, "assignment_answers") == 0


@pytest.mark.asyncio
async def test_concurrent_submits_accept_exactly_one(create_assignment, database, clock):
    assignment_id, questions = await create_assignment()
    answers = [{"question_id": questions[1], "selected": "B"}]

    results = await asyncio.gather(
        attempts.submit(database, assignment_id, ENROLLED_STUDENT, answers, clock()),
        attempts.submit(database, assignment_id, ENROLLED_STUDENT, answers, clock()),
        return_exceptions=True,
    )

    graded = [r for r in results if isinstance(r, dict)]
    rejected = [r for r in results if isinstance(r, AlreadySubmitted)]
    assert len(graded) == 1
    assert len(rejected) == 1
    assert rejected[0].status_code == 409
    assert graded[0]["score"] == 20.0
    status, score, _ = await _submission(database, assignment_id)
    assert (status, score) == ("submitted", 20.0)
    assert await count_rows(database, "assignment_submissions") == 1
