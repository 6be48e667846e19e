from fastapi import APIRouter, Depends, Path, Request
from pydantic import BaseModel
from typing import Any, Optional
from database import Database, get_database
from services import attempts, listing
from utils.clock import Clock, get_clock
from utils.identity import require_student
from utils.notifier import assignment_channel, notify
import logging

# Setup logger
logger = logging.getLogger("student_routes")

router = APIRouter(prefix="/student/assignments", tags=["Student"])


class AnswersPayload(BaseModel):
    # Entries are checked one by one in the service; bad ones are skipped, not rejected
    answers: Optional[Any] = None


def _answers(payload: Optional[AnswersPayload]) -> Any:
    return payload.answers if payload is not None else None


# ----------------------------
# Endpoints
# ----------------------------
@router.get("")
async def list_assignments(
    student_id: int = Depends(require_student),
    db: Database = Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """
    Assignments of every course the student is enrolled in, with a status
    derived from their submission and the deadline.
    """
    assignments = await listing.list_student_assignments(db, student_id, clock())
    return {"ok": True, "assignments": assignments}


@router.get("/{assignment_id}")
async def get_assignment(
    assignment_id: int = Path(..., gt=0),
    student_id: int = Depends(require_student),
    db: Database = Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    detail = await listing.get_student_assignment(db, assignment_id, student_id, clock())
    return {"ok": True, **detail}


@router.post("/{assignment_id}/autosave")
async def autosave(
    payload: Optional[AnswersPayload] = None,
    assignment_id: int = Path(..., gt=0),
    student_id: int = Depends(require_student),
    db: Database = Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """
    Save in-progress answers. Safe to call repeatedly; the last write wins.
    """
    result = await attempts.autosave(db, assignment_id, student_id, _answers(payload), clock())
    return {"ok": True, **result}


@router.post("/{assignment_id}/submit")
async def submit(
    request: Request,
    payload: Optional[AnswersPayload] = None,
    assignment_id: int = Path(..., gt=0),
    student_id: int = Depends(require_student),
    db: Database = Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """
    Final save, grade and lock the attempt. A second submit is rejected.
    """
    result = await attempts.submit(db, assignment_id, student_id, _answers(payload), clock())

    await notify(
        request.app.state.notifier,
        assignment_channel(assignment_id),
        "submission",
        {"student_id": student_id, "score": result["score"], "submitted_at": result["submitted_at"]},
    )
    return {"ok": True, **result}
