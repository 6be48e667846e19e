from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, func,
)
from sqlalchemy.orm import relationship
from database import Base


class Student(Base):
    __tablename__ = "students"
    student_id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True)
    # accounts and passwords live with the auth service


class Course(Base):
    __tablename__ = "courses"
    course_id = Column(Integer, primary_key=True, index=True)
    code = Column(String(20), nullable=False, unique=True)
    title = Column(String(255), nullable=False)

    assignments = relationship("Assignment", back_populates="course")


class CourseResponse(Base):
    """A student's response to a course offering; 'selected' means enrolled."""
    __tablename__ = "course_responses"
    response_id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.student_id", ondelete="CASCADE"), nullable=False)
    course_id = Column(Integer, ForeignKey("courses.course_id", ondelete="CASCADE"), nullable=False)
    response_status = Column(String(20), nullable=False, default="pending")


class Assignment(Base):
    __tablename__ = "assignments"
    assignment_id = Column(Integer, primary_key=True, index=True)
    course_id = Column(Integer, ForeignKey("courses.course_id"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    created_by = Column(String(100), nullable=True)
    deadline = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    course = relationship("Course", back_populates="assignments")
    questions = relationship("AssignmentQuestion", back_populates="assignment")
    submissions = relationship("AssignmentSubmission", back_populates="assignment")


class AssignmentQuestion(Base):
    __tablename__ = "assignment_questions"
    __table_args__ = (UniqueConstraint("assignment_id", "position", name="uq_question_position"),)
    question_id = Column(Integer, primary_key=True, index=True)
    assignment_id = Column(Integer, ForeignKey("assignments.assignment_id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)
    question_text = Column(Text, nullable=False)
    marks = Column(Float, nullable=False, default=1)

    assignment = relationship("Assignment", back_populates="questions")
    options = relationship("AssignmentOption", back_populates="question")


class AssignmentOption(Base):
    __tablename__ = "assignment_options"
    __table_args__ = (UniqueConstraint("question_id", "label", name="uq_option_label"),)
    option_id = Column(Integer, primary_key=True, index=True)
    question_id = Column(Integer, ForeignKey("assignment_questions.question_id", ondelete="CASCADE"), nullable=False)
    label = Column(String(1), nullable=False)
    option_text = Column(Text, nullable=False)
    is_correct = Column(Boolean, nullable=False, default=False)

    question = relationship("AssignmentQuestion", back_populates="options")


class AssignmentSubmission(Base):
    __tablename__ = "assignment_submissions"
    __table_args__ = (UniqueConstraint("assignment_id", "student_id", name="uq_submission_student"),)
    submission_id = Column(Integer, primary_key=True, index=True)
    assignment_id = Column(Integer, ForeignKey("assignments.assignment_id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Integer, ForeignKey("students.student_id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False, default="in_progress")
    last_saved_at = Column(DateTime(timezone=True), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    score = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    assignment = relationship("Assignment", back_populates="submissions")
    answers = relationship("AssignmentAnswer", back_populates="submission")


class AssignmentAnswer(Base):
    __tablename__ = "assignment_answers"
    __table_args__ = (UniqueConstraint("submission_id", "question_id", name="uq_answer_question"),)
    answer_id = Column(Integer, primary_key=True, index=True)
    submission_id = Column(Integer, ForeignKey("assignment_submissions.submission_id", ondelete="CASCADE"), nullable=False)
    question_id = Column(Integer, ForeignKey("assignment_questions.question_id", ondelete="CASCADE"), nullable=False)
    selected_label = Column(String(1), nullable=True)
    correct = Column(Boolean, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    submission = relationship("AssignmentSubmission", back_populates="answers")
