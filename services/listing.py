"""Read-only student projections: assignment list and attempt detail."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession

from database import Database
from errors import NotFound
from services.attempts import SUBMITTED
from utils.clock import as_utc, isoformat


def derive_status(submission_status: Optional[str], deadline: datetime, now: datetime) -> str:
    if submission_status == SUBMITTED:
        return "submitted"
    if now > deadline:
        return "closed"
    if submission_status:
        return "in_progress"
    return "open"


async def list_student_assignments(db: Database, student_id: int, now: datetime) -> List[Dict[str, Any]]:
    async def work(session: AsyncSession) -> List[Dict[str, Any]]:
        res = await session.execute(
            text("""
                SELECT DISTINCT a.assignment_id, a.course_id, a.title, a.description, a.deadline,
                       s.status, s.score, s.submitted_at
                FROM assignments a
                JOIN course_responses cr ON cr.course_id = a.course_id
                LEFT JOIN assignment_submissions s
                       ON s.assignment_id = a.assignment_id AND s.student_id = cr.student_id
                WHERE cr.student_id = :sid
                  AND cr.response_status = 'selected'
                ORDER BY a.deadline DESC
            """),
            {"sid": student_id},
        )
        assignments = []
        for r in res.fetchall():
            deadline = as_utc(r.deadline)
            assignments.append({
                "assignment_id": r.assignment_id,
                "course_id": r.course_id,
                "title": r.title,
                "description": r.description,
                "deadline": isoformat(deadline),
                "status": derive_status(r.status, deadline, now),
                "score": r.score,
                "submitted_at": isoformat(r.submitted_at),
            })
        return assignments

    return await db.run(work, label="list student assignments")


async def get_student_assignment(db: Database, assignment_id: int, student_id: int, now: datetime) -> Dict[str, Any]:
    """
    Assignment, questions with their options and the student's own answers.
    Option correctness is never selected here.
    """
    async def work(session: AsyncSession) -> Dict[str, Any]:
        res = await session.execute(
            text("SELECT assignment_id, course_id, title, description, deadline FROM assignments WHERE assignment_id = :aid"),
            {"aid": assignment_id},
        )
        row = res.first()
        if row is None:
            raise NotFound()
        assignment = dict(row._mapping)
        deadline = as_utc(assignment["deadline"])
        assignment["deadline"] = isoformat(deadline)

        qres = await session.execute(
            text("""
                SELECT question_id, position, question_text
                FROM assignment_questions
                WHERE assignment_id = :aid
                ORDER BY position
            """),
            {"aid": assignment_id},
        )
        questions = [
            {"question_id": q[0], "position": q[1], "question_text": q[2], "options": []}
            for q in qres.fetchall()
        ]

        if questions:
            ores = await session.execute(
                text("""
                    SELECT question_id, label, option_text
                    FROM assignment_options
                    WHERE question_id IN :qids
                    ORDER BY question_id, label
                """).bindparams(bindparam("qids", expanding=True)),
                {"qids": [q["question_id"] for q in questions]},
            )
            by_question: Dict[int, List[Dict[str, str]]] = {}
            for qid, label, option_text in ores.fetchall():
                by_question.setdefault(qid, []).append({"label": label, "text": option_text})
            for q in questions:
                q["options"] = by_question.get(q["question_id"], [])

        sres = await session.execute(
            text("""
                SELECT submission_id, status, last_saved_at, submitted_at, score
                FROM assignment_submissions
                WHERE assignment_id = :aid AND student_id = :sid
            """),
            {"aid": assignment_id, "sid": student_id},
        )
        srow = sres.first()
        submission = None
        answers: Dict[int, Optional[str]] = {}
        if srow is not None:
            submission = {
                "submission_id": srow.submission_id,
                "status": srow.status,
                "last_saved_at": isoformat(srow.last_saved_at),
                "submitted_at": isoformat(srow.submitted_at),
                "score": srow.score,
            }
            ares = await session.execute(
                text("SELECT question_id, selected_label FROM assignment_answers WHERE submission_id = :sub"),
                {"sub": srow.submission_id},
            )
            answers = {qid: label for qid, label in ares.fetchall()}

        for q in questions:
            q["selected"] = answers.get(q["question_id"])

        assignment["status"] = derive_status(submission["status"] if submission else None, deadline, now)
        return {"assignment": assignment, "questions": questions, "submission": submission, "answers": answers}

    return await db.run(work, label="load student assignment")
