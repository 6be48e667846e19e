"""
Validation of professor and student payloads.

Assignments have a fixed shape: exactly ``QUESTION_COUNT`` questions, each
with one option per label in ``OPTION_LABELS`` and exactly one correct
option. The pydantic models below carry the rules; every rule raises a
``PydanticCustomError`` whose type is the machine-readable code returned to
the client. Validation runs before any write and only the first failing
rule is reported, so the field order of each model is the order in which
rules are checked.
"""

import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_core import PydanticCustomError

from errors import PayloadError
from utils.clock import as_utc

QUESTION_COUNT = 5
OPTION_LABELS = ("A", "B", "C", "D")
DEFAULT_MARKS = 1.0

PAYLOAD_CODES = (
    "missing_fields",
    "invalid_deadline",
    "invalid_course",
    "invalid_questions",
    "invalid_question",
    "invalid_marks",
    "invalid_option",
    "invalid_option_label",
    "duplicate_option_label",
    "invalid_correct_option",
    "invalid_answer",
)


def _positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        n = int(value.strip())
        return n if n > 0 else None
    return None


class OptionIn(BaseModel):
    label: str
    text: str
    is_correct: bool = False

    @model_validator(mode="before")
    @classmethod
    def _shape(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not isinstance(data.get("label"), str) or not isinstance(data.get("text"), str):
            raise PydanticCustomError("invalid_option", "option needs a string label and text")
        return data

    @field_validator("label")
    @classmethod
    def _known_label(cls, v: str) -> str:
        label = v.strip().upper()
        if label not in OPTION_LABELS:
            raise PydanticCustomError("invalid_option_label", "label must be one of A, B, C, D")
        return label

    @field_validator("is_correct", mode="before")
    @classmethod
    def _truthy(cls, v: Any) -> bool:
        return bool(v)


class QuestionIn(BaseModel):
    question_text: str = Field(..., min_length=1)
    position: Optional[int] = Field(None, gt=0)
    marks: float = Field(DEFAULT_MARKS, ge=0)
    options: List[OptionIn] = Field(..., min_length=len(OPTION_LABELS), max_length=len(OPTION_LABELS))

    @model_validator(mode="before")
    @classmethod
    def _shape(cls, data: Any) -> Any:
        if (
            not isinstance(data, dict)
            or not isinstance(data.get("question_text"), str)
            or not data["question_text"].strip()
            or not isinstance(data.get("options"), list)
            or len(data["options"]) != len(OPTION_LABELS)
        ):
            raise PydanticCustomError("invalid_question", "question needs text and four options")
        data = dict(data)
        # older clients send the weight as ``points``
        if data.get("marks") is None:
            data["marks"] = data.get("points")
        return data

    @field_validator("position", mode="before")
    @classmethod
    def _position(cls, v: Any) -> Optional[int]:
        if v is None:
            return None
        position = _positive_int(v)
        if position is None:
            raise PydanticCustomError("invalid_question", "position must be a positive integer")
        return position

    @field_validator("marks", mode="before")
    @classmethod
    def _marks(cls, v: Any) -> float:
        if v is None:
            return DEFAULT_MARKS
        if isinstance(v, bool):
            raise PydanticCustomError("invalid_marks", "marks must be a number")
        try:
            marks = float(v)
        except (TypeError, ValueError):
            raise PydanticCustomError("invalid_marks", "marks must be a number")
        if not math.isfinite(marks) or marks < 0:
            raise PydanticCustomError("invalid_marks", "marks must be a finite number >= 0")
        return marks

    @model_validator(mode="after")
    def _one_key(self) -> "QuestionIn":
        labels = [o.label for o in self.options]
        if len(set(labels)) != len(labels):
            raise PydanticCustomError("duplicate_option_label", "each label may appear once")
        if sum(1 for o in self.options if o.is_correct) != 1:
            raise PydanticCustomError("invalid_correct_option", "exactly one option must be correct")
        return self


class AssignmentIn(BaseModel):
    title: str
    description: str = ""
    deadline: datetime
    course_id: int
    questions: List[QuestionIn]

    @model_validator(mode="before")
    @classmethod
    def _required(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            raise PydanticCustomError("missing_fields", "body must be an object")
        title = data.get("title")
        if (
            not data.get("course_id")
            or not isinstance(title, str)
            or not title.strip()
            or not data.get("deadline")
            or not isinstance(data.get("questions"), list)
        ):
            raise PydanticCustomError("missing_fields", "course_id, title, deadline and questions are required")
        return data

    @field_validator("title")
    @classmethod
    def _strip_title(cls, v: str) -> str:
        return v.strip()

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, v: Any) -> str:
        return str(v) if v else ""

    @field_validator("deadline", mode="before")
    @classmethod
    def _deadline(cls, v: Any) -> datetime:
        if not isinstance(v, (str, datetime)):
            raise PydanticCustomError("invalid_deadline", "deadline must be an ISO-8601 timestamp")
        try:
            return as_utc(v)
        except ValueError:
            raise PydanticCustomError("invalid_deadline", "deadline must be an ISO-8601 timestamp")

    @field_validator("course_id", mode="before")
    @classmethod
    def _course(cls, v: Any) -> int:
        course_id = _positive_int(v)
        if course_id is None:
            raise PydanticCustomError("invalid_course", "course_id must be a positive integer")
        return course_id

    @field_validator("questions", mode="before")
    @classmethod
    def _question_count(cls, v: Any) -> Any:
        if isinstance(v, list) and len(v) != QUESTION_COUNT:
            raise PydanticCustomError("invalid_questions", f"require exactly {QUESTION_COUNT} questions")
        return v

    @model_validator(mode="after")
    def _positions(self) -> "AssignmentIn":
        seen = set()
        for i, q in enumerate(self.questions):
            if q.position is None:
                q.position = i + 1
            if q.position in seen:
                raise PydanticCustomError("invalid_question", f"duplicate position for question {i}")
            seen.add(q.position)
        return self


class AnswerIn(BaseModel):
    question_id: int
    selected: Optional[str] = None

    @field_validator("question_id", mode="before")
    @classmethod
    def _question_id(cls, v: Any) -> int:
        qid = _positive_int(v)
        if qid is None:
            raise PydanticCustomError("invalid_answer", "question_id must be a positive integer")
        return qid

    @field_validator("selected", mode="before")
    @classmethod
    def _selected(cls, v: Any) -> Optional[str]:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        if isinstance(v, str) and v.strip().upper() in OPTION_LABELS:
            return v.strip().upper()
        raise PydanticCustomError("invalid_answer", "selected must be one of A, B, C, D or empty")


def payload_error(errors: Sequence[Dict[str, Any]]) -> PayloadError:
    """
    Turn pydantic's error list (model or request validation) into the one
    ``PayloadError`` the client sees: the first failing rule.
    """
    if not errors:
        return PayloadError("missing_fields")
    first = errors[0]
    loc = tuple(first.get("loc") or ())
    if loc and loc[0] == "path":
        return PayloadError("assignment_id required")
    if loc and loc[0] == "query":
        return PayloadError("invalid_course" if loc[-1] == "course_id" else "invalid_query", first.get("msg"))
    if loc and loc[0] == "body":
        loc = loc[1:]

    code = first.get("type")
    if code not in PAYLOAD_CODES:
        if "options" in loc:
            code = "invalid_option"
        elif loc[:1] == ("questions",) and len(loc) > 1:
            code = "invalid_question"
        elif loc[:1] == ("deadline",):
            code = "invalid_deadline"
        elif loc[:1] == ("course_id",):
            code = "invalid_course"
        else:
            code = "missing_fields"
    return PayloadError(code, first.get("msg"))


def parse_assignment_payload(payload: Any) -> AssignmentIn:
    try:
        return AssignmentIn.model_validate(payload)
    except ValidationError as e:
        raise payload_error(e.errors())


def parse_answer_entries(answers: Any, question_ids) -> Tuple[List[AnswerIn], int]:
    """
    Keep the well-formed entries for questions of this assignment and count
    the rest. One bad entry never sinks the batch. A repeated question keeps
    its last entry. An ``answers`` value that is not a list counts as one
    skipped entry.
    """
    if answers is None:
        return [], 0
    if not isinstance(answers, list):
        return [], 1

    kept: Dict[int, AnswerIn] = {}
    skipped = 0
    for a in answers:
        try:
            entry = AnswerIn.model_validate(a)
        except ValidationError:
            skipped += 1
            continue
        if entry.question_id not in question_ids:
            skipped += 1
            continue
        kept.pop(entry.question_id, None)
        kept[entry.question_id] = entry
    return list(kept.values()), skipped
