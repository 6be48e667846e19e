"""
Assignment authoring: create, edit and read back fixed-shape assignments.

Edits reconcile questions by ``position`` and options by ``label`` so the
ids students' answers point at survive an edit. A question whose position
disappears from the payload is removed together with its options and
answers.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession

from database import Database, timestamped
from errors import NotFound, PayloadError
from services.payloads import AssignmentIn, QuestionIn
from utils.clock import isoformat

logger = logging.getLogger("authoring")


async def _ensure_course(session: AsyncSession, course_id: int) -> None:
    res = await session.execute(
        text("SELECT course_id FROM courses WHERE course_id = :cid"), {"cid": course_id}
    )
    if res.first() is None:
        raise PayloadError("invalid_course", f"course {course_id} not found")


async def _delete_questions(session: AsyncSession, question_ids: List[int]) -> None:
    for table in ("assignment_answers", "assignment_options", "assignment_questions"):
        await session.execute(
            text(f"DELETE FROM {table} WHERE question_id IN :ids").bindparams(
                bindparam("ids", expanding=True)
            ),
            {"ids": question_ids},
        )


async def _write_questions(session: AsyncSession, assignment_id: int, questions: List[QuestionIn]) -> None:
    res = await session.execute(
        text("SELECT question_id, position FROM assignment_questions WHERE assignment_id = :aid"),
        {"aid": assignment_id},
    )
    existing = {position: qid for qid, position in res.fetchall()}
    wanted = {q.position for q in questions}
    stale = [qid for position, qid in existing.items() if position not in wanted]
    if stale:
        logger.info(f"Removing {len(stale)} question(s) from assignment {assignment_id}: {stale}")
        await _delete_questions(session, stale)

    for q in questions:
        qres = await session.execute(
            text("""
                INSERT INTO assignment_questions (assignment_id, position, question_text, marks)
                VALUES (:aid, :pos, :text, :marks)
                ON CONFLICT (assignment_id, position)
                DO UPDATE SET question_text = excluded.question_text, marks = excluded.marks
                RETURNING question_id
            """),
            {"aid": assignment_id, "pos": q.position, "text": q.question_text, "marks": q.marks},
        )
        question_id = qres.scalar_one()

        await session.execute(
            text("""
                INSERT INTO assignment_options (question_id, label, option_text, is_correct)
                VALUES (:qid, :label, :text, :correct)
                ON CONFLICT (question_id, label)
                DO UPDATE SET option_text = excluded.option_text, is_correct = excluded.is_correct
            """),
            [
                {"qid": question_id, "label": o.label, "text": o.text, "correct": o.is_correct}
                for o in q.options
            ],
        )


async def _load_assignment(session: AsyncSession, assignment_id: int) -> Optional[Dict[str, Any]]:
    res = await session.execute(
        text("""
            SELECT a.assignment_id, a.course_id, a.title, a.description, a.deadline,
                   a.created_by, a.created_at, a.updated_at,
                   q.question_id, q.position, q.question_text, q.marks,
                   o.option_id, o.label, o.option_text, o.is_correct
            FROM assignments a
            LEFT JOIN assignment_questions q ON q.assignment_id = a.assignment_id
            LEFT JOIN assignment_options o ON o.question_id = q.question_id
            WHERE a.assignment_id = :aid
            ORDER BY q.position, o.label
        """),
        {"aid": assignment_id},
    )

    assignment = None
    questions: Dict[int, Dict[str, Any]] = {}
    for r in res.fetchall():
        r = r._mapping
        if assignment is None:
            assignment = {
                "id": r["assignment_id"],
                "course_id": r["course_id"],
                "title": r["title"],
                "description": r["description"],
                "deadline": isoformat(r["deadline"]),
                "created_by": r["created_by"],
                "created_at": isoformat(r["created_at"]),
                "updated_at": isoformat(r["updated_at"]),
                "questions": [],
            }
        if r["question_id"] is None:
            continue
        if r["question_id"] not in questions:
            q = {
                "id": r["question_id"],
                "position": r["position"],
                "question_text": r["question_text"],
                "marks": r["marks"],
                "options": [],
            }
            questions[r["question_id"]] = q
            assignment["questions"].append(q)
        if r["option_id"] is not None:
            questions[r["question_id"]]["options"].append({
                "id": r["option_id"],
                "label": r["label"],
                "text": r["option_text"],
                "is_correct": bool(r["is_correct"]),
            })
    return assignment


async def create_assignment(db: Database, draft: AssignmentIn, created_by: Optional[str], now: datetime) -> int:
    async def work(session: AsyncSession) -> int:
        await _ensure_course(session, draft.course_id)
        res = await session.execute(
            timestamped(
                """
                INSERT INTO assignments (course_id, title, description, created_by, deadline, created_at, updated_at)
                VALUES (:cid, :title, :desc, :by, :deadline, :now, :now)
                RETURNING assignment_id
                """,
                "deadline", "now",
            ),
            {
                "cid": draft.course_id,
                "title": draft.title,
                "desc": draft.description,
                "by": created_by,
                "deadline": draft.deadline,
                "now": now,
            },
        )
        assignment_id = res.scalar_one()
        await _write_questions(session, assignment_id, draft.questions)
        return assignment_id

    assignment_id = await db.run(work, label="create assignment")
    logger.info(f"Assignment {assignment_id} created by {created_by} for course {draft.course_id}")
    return assignment_id


async def update_assignment(db: Database, assignment_id: int, draft: AssignmentIn, now: datetime) -> Dict[str, Any]:
    async def work(session: AsyncSession) -> Dict[str, Any]:
        res = await session.execute(
            text("SELECT assignment_id FROM assignments WHERE assignment_id = :aid"), {"aid": assignment_id}
        )
        if res.first() is None:
            raise NotFound()
        await _ensure_course(session, draft.course_id)

        await session.execute(
            timestamped(
                """
                UPDATE assignments
                SET course_id = :cid, title = :title, description = :desc, deadline = :deadline, updated_at = :now
                WHERE assignment_id = :aid
                """,
                "deadline", "now",
            ),
            {
                "cid": draft.course_id,
                "title": draft.title,
                "desc": draft.description,
                "deadline": draft.deadline,
                "now": now,
                "aid": assignment_id,
            },
        )
        await _write_questions(session, assignment_id, draft.questions)
        return await _load_assignment(session, assignment_id)

    assignment = await db.run(work, label="update assignment")
    logger.info(f"Assignment {assignment_id} updated")
    return assignment


async def get_assignment(db: Database, assignment_id: int) -> Dict[str, Any]:
    """Professor view, answer key included."""
    assignment = await db.run(_load_assignment, assignment_id, label="load assignment")
    if assignment is None:
        raise NotFound()
    return assignment


async def list_assignments(db: Database, course_id: Optional[int] = None) -> List[Dict[str, Any]]:
    async def work(session: AsyncSession) -> List[Dict[str, Any]]:
        sql = """
            SELECT a.assignment_id, a.course_id, a.title, a.description, a.deadline, a.updated_at,
                   COUNT(q.question_id) AS question_count
            FROM assignments a
            LEFT JOIN assignment_questions q ON q.assignment_id = a.assignment_id
            {where}
            GROUP BY a.assignment_id, a.course_id, a.title, a.description, a.deadline, a.updated_at
            ORDER BY a.deadline DESC
        """
        if course_id is None:
            res = await session.execute(text(sql.format(where="")))
        else:
            res = await session.execute(
                text(sql.format(where="WHERE a.course_id = :cid")), {"cid": course_id}
            )
        return [
            {
                "assignment_id": r[0],
                "course_id": r[1],
                "title": r[2],
                "description": r[3],
                "deadline": isoformat(r[4]),
                "updated_at": isoformat(r[5]),
                "question_count": r[6],
            }
            for r in res.fetchall()
        ]

    return await db.run(work, label="list assignments")


async def list_submissions(db: Database, assignment_id: int) -> List[Dict[str, Any]]:
    async def work(session: AsyncSession) -> List[Dict[str, Any]]:
        res = await session.execute(
            text("SELECT assignment_id FROM assignments WHERE assignment_id = :aid"), {"aid": assignment_id}
        )
        if res.first() is None:
            raise NotFound()
        res = await session.execute(
            text("""
                SELECT s.submission_id, s.student_id, s.status, s.score, s.submitted_at, s.last_saved_at
                FROM assignment_submissions s
                WHERE s.assignment_id = :aid
                ORDER BY s.submitted_at DESC, s.last_saved_at DESC
            """),
            {"aid": assignment_id},
        )
        return [
            {
                "submission_id": r[0],
                "student_id": r[1],
                "status": r[2],
                "score": r[3],
                "submitted_at": isoformat(r[4]),
                "last_saved_at": isoformat(r[5]),
            }
            for r in res.fetchall()
        ]

    return await db.run(work, label="list submissions")
