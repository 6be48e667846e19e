"""
Attempt session and grading engine.

A student's attempt is one ``assignment_submissions`` row per
(assignment, student) plus one ``assignment_answers`` row per question.
Both are written with upserts keyed on those pairs, so repeated autosaves
are idempotent and the last write wins.

State machine: (none) -> in_progress -> submitted. ``in_progress ->
submitted`` is the only transition out of a draft and happens once; any
write against a submitted attempt is rejected with ``already_submitted``.

Scoring is unweighted: ``score = correct_count / total_q * 100`` rounded to
two places, where unanswered questions count as wrong. Question marks are
reported alongside (``marks_awarded`` / ``marks_total``) but never change
the score.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Set, Tuple

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from database import Database, timestamped
from errors import AlreadySubmitted, DeadlinePassed, NotFound
from services.payloads import AnswerIn, parse_answer_entries
from utils.clock import as_utc, isoformat

logger = logging.getLogger("attempts")

IN_PROGRESS = "in_progress"
SUBMITTED = "submitted"


def score_percentage(correct_count: int, total_q: int) -> float:
    if not total_q:
        return 0.0
    return round(correct_count / total_q * 100, 2)


async def _open_attempt(session: AsyncSession, assignment_id: int, student_id: int,
                        now: datetime) -> Tuple[int, Set[int]]:
    """
    Check existence and deadline, then create or touch the draft submission.
    Returns the submission id and the assignment's question ids.
    """
    res = await session.execute(
        text("SELECT deadline FROM assignments WHERE assignment_id = :aid"), {"aid": assignment_id}
    )
    row = res.first()
    if row is None:
        raise NotFound()
    if now > as_utc(row[0]):
        raise DeadlinePassed()

    res = await session.execute(
        text("SELECT student_id FROM students WHERE student_id = :sid"), {"sid": student_id}
    )
    if res.first() is None:
        raise NotFound("student_not_found")

    # The conditional DO UPDATE leaves submitted rows alone and returns nothing for them
    res = await session.execute(
        timestamped(
            """
            INSERT INTO assignment_submissions
                (assignment_id, student_id, status, last_saved_at, created_at, updated_at)
            VALUES (:aid, :sid, 'in_progress', :now, :now, :now)
            ON CONFLICT (assignment_id, student_id)
            DO UPDATE SET last_saved_at = excluded.last_saved_at, updated_at = excluded.updated_at
            WHERE assignment_submissions.status = 'in_progress'
            RETURNING submission_id
            """,
            "now",
        ),
        {"aid": assignment_id, "sid": student_id, "now": now},
    )
    submission_id = res.scalar_one_or_none()
    if submission_id is None:
        raise AlreadySubmitted()

    qres = await session.execute(
        text("SELECT question_id FROM assignment_questions WHERE assignment_id = :aid"), {"aid": assignment_id}
    )
    return submission_id, {r[0] for r in qres.fetchall()}


async def _save_answers(session: AsyncSession, submission_id: int, entries: List[AnswerIn], now: datetime) -> None:
    if not entries:
        return
    await session.execute(
        timestamped(
            """
            INSERT INTO assignment_answers (submission_id, question_id, selected_label, updated_at)
            VALUES (:sub, :qid, :sel, :now)
            ON CONFLICT (submission_id, question_id)
            DO UPDATE SET selected_label = excluded.selected_label, updated_at = excluded.updated_at
            """,
            "now",
        ),
        [{"sub": submission_id, "qid": e.question_id, "sel": e.selected, "now": now} for e in entries],
    )


async def _grade(session: AsyncSession, assignment_id: int, submission_id: int) -> Dict[str, Any]:
    await session.execute(
        text("""
            UPDATE assignment_answers
            SET correct = CASE WHEN EXISTS (
                    SELECT 1 FROM assignment_options o
                    WHERE o.question_id = assignment_answers.question_id
                      AND o.label = assignment_answers.selected_label
                      AND o.is_correct = TRUE
                ) THEN TRUE ELSE FALSE END
            WHERE submission_id = :sub
        """),
        {"sub": submission_id},
    )

    res = await session.execute(
        text("""
            SELECT COALESCE(SUM(CASE WHEN aa.correct = TRUE THEN 1 ELSE 0 END), 0) AS correct_count,
                   COUNT(q.question_id) AS total_q,
                   COALESCE(SUM(CASE WHEN aa.correct = TRUE THEN q.marks ELSE 0 END), 0) AS marks_awarded,
                   COALESCE(SUM(q.marks), 0) AS marks_total
            FROM assignment_questions q
            LEFT JOIN assignment_answers aa ON aa.question_id = q.question_id AND aa.submission_id = :sub
            WHERE q.assignment_id = :aid
        """),
        {"sub": submission_id, "aid": assignment_id},
    )
    correct_count, total_q, marks_awarded, marks_total = res.one()
    correct_count = int(correct_count or 0)
    total_q = int(total_q or 0)
    return {
        "score": score_percentage(correct_count, total_q),
        "correct_count": correct_count,
        "total_q": total_q,
        "marks_awarded": round(float(marks_awarded or 0), 2),
        "marks_total": round(float(marks_total or 0), 2),
    }


async def autosave(db: Database, assignment_id: int, student_id: int, answers: Any, now: datetime) -> Dict[str, Any]:
    async def work(session: AsyncSession) -> Dict[str, Any]:
        submission_id, question_ids = await _open_attempt(session, assignment_id, student_id, now)
        entries, skipped = parse_answer_entries(answers, question_ids)
        await _save_answers(session, submission_id, entries, now)
        return {"last_saved_at": isoformat(now), "saved": len(entries), "skipped": skipped}

    result = await db.run(work, label="autosave")
    if result["skipped"]:
        logger.warning(
            f"Autosave for assignment {assignment_id}, student {student_id} skipped {result['skipped']} entries"
        )
    return result


async def submit(db: Database, assignment_id: int, student_id: int, answers: Any, now: datetime) -> Dict[str, Any]:
    async def work(session: AsyncSession) -> Dict[str, Any]:
        submission_id, question_ids = await _open_attempt(session, assignment_id, student_id, now)
        entries, skipped = parse_answer_entries(answers, question_ids)
        await _save_answers(session, submission_id, entries, now)

        summary = await _grade(session, assignment_id, submission_id)

        res = await session.execute(
            timestamped(
                """
                UPDATE assignment_submissions
                SET score = :score, status = 'submitted', submitted_at = :now, updated_at = :now
                WHERE submission_id = :sub AND status = 'in_progress'
                """,
                "now",
            ),
            {"score": summary["score"], "now": now, "sub": submission_id},
        )
        if res.rowcount != 1:
            raise AlreadySubmitted()

        summary.update({"skipped": skipped, "submitted_at": isoformat(now)})
        return summary

    result = await db.run(work, label="submit")
    logger.info(
        f"Submission graded for student {student_id}, assignment {assignment_id}: "
        f"{result['correct_count']}/{result['total_q']} ({result['score']})"
    )
    return result
