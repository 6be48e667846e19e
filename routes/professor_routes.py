from fastapi import APIRouter, Depends, Path, Request
from typing import Optional
from database import Database, get_database
from services import authoring
from services.payloads import AssignmentIn
from utils.clock import Clock, get_clock
from utils.identity import IdentityContext, require_professor
from utils.notifier import ASSIGNMENTS_CHANNEL, notify
import logging

# Setup logger
logger = logging.getLogger("professor_routes")

router = APIRouter(prefix="/assignments", tags=["Professor"])


# ----------------------------
# Create / update
# ----------------------------
@router.post("", status_code=201)
async def create_assignment(
    payload: AssignmentIn,
    request: Request,
    professor: IdentityContext = Depends(require_professor),
    db: Database = Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """
    Create a 5-question multiple-choice assignment in one transaction.
    """
    logger.info(f"Received assignment create request for course {payload.course_id} from {professor.subject_id}")

    assignment_id = await authoring.create_assignment(db, payload, professor.subject_id, clock())

    await notify(
        request.app.state.notifier,
        ASSIGNMENTS_CHANNEL,
        "assignment:created",
        {"assignment_id": assignment_id, "course_id": payload.course_id},
    )
    return {"ok": True, "assignment_id": assignment_id}


@router.put("/{assignment_id}")
async def update_assignment(
    payload: AssignmentIn,
    request: Request,
    assignment_id: int = Path(..., gt=0),
    professor: IdentityContext = Depends(require_professor),
    db: Database = Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """
    Edit an assignment. Questions are matched by position and options by
    label, so answers already given stay attached to their questions.
    """
    logger.info(f"Received update for assignment {assignment_id} from {professor.subject_id}")

    assignment = await authoring.update_assignment(db, assignment_id, payload, clock())

    await notify(
        request.app.state.notifier,
        ASSIGNMENTS_CHANNEL,
        "assignment:updated",
        {"assignment_id": assignment_id, "course_id": payload.course_id},
    )
    return {"ok": True, "assignment": assignment}


# ----------------------------
# Read views
# ----------------------------
@router.get("")
async def list_assignments(
    course_id: Optional[int] = None,
    professor: IdentityContext = Depends(require_professor),
    db: Database = Depends(get_database),
):
    assignments = await authoring.list_assignments(db, course_id)
    return {"ok": True, "assignments": assignments}


@router.get("/{assignment_id}")
async def get_assignment(
    assignment_id: int = Path(..., gt=0),
    professor: IdentityContext = Depends(require_professor),
    db: Database = Depends(get_database),
):
    """
    Full assignment including the answer key, as loaded by the edit form.
    """
    assignment = await authoring.get_assignment(db, assignment_id)
    return {"ok": True, "assignment": assignment}


@router.get("/{assignment_id}/submissions")
async def list_submissions(
    assignment_id: int = Path(..., gt=0),
    professor: IdentityContext = Depends(require_professor),
    db: Database = Depends(get_database),
):
    submissions = await authoring.list_submissions(db, assignment_id)
    return {"ok": True, "submissions": submissions}
