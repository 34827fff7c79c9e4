from __future__ import annotations
import enum
import uuid
from datetime import datetime
from sqlalchemy import Boolean, Column, String, DateTime, Integer, Text, JSON, Enum, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from .db import Base
from .difficulty import Difficulty


def _new_id() -> str:
	return uuid.uuid4().hex


class UserRole(str, enum.Enum):
	STUDENT = "STUDENT"
	TEACHER = "TEACHER"
	ADMIN = "ADMIN"


class AuthUser(Base):
	__tablename__ = "auth_users"
	id = Column(String(32), primary_key=True, default=_new_id)
	username = Column(String(128), unique=True, index=True, nullable=False)
	password_hash = Column(String(256), nullable=False)
	email = Column(String(256), nullable=True)
	first_name = Column(String(128), nullable=True)
	last_name = Column(String(128), nullable=True)
	role = Column(Enum(UserRole), default=UserRole.STUDENT, nullable=False)
	is_active = Column(Boolean, default=True, nullable=False)
	last_login_at = Column(DateTime, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	@property
	def display_name(self) -> str:
		name = f"{self.first_name or ''} {self.last_name or ''}".strip()
		return name or self.username


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	# jti claim of the issued token
	session_id = Column(String(64), primary_key=True)
	user_id = Column(String(32), ForeignKey("auth_users.id", ondelete="CASCADE"), index=True, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class TeacherStudent(Base):
	__tablename__ = "teacher_students"
	__table_args__ = (UniqueConstraint("teacher_id", "student_id", name="uq_teacher_student"),)
	id = Column(String(32), primary_key=True, default=_new_id)
	teacher_id = Column(String(32), ForeignKey("auth_users.id", ondelete="CASCADE"), index=True, nullable=False)
	student_id = Column(String(32), ForeignKey("auth_users.id", ondelete="CASCADE"), index=True, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	student = relationship("AuthUser", foreign_keys=[student_id])


class Quiz(Base):
	__tablename__ = "quizzes"
	id = Column(String(32), primary_key=True, default=_new_id)
	title = Column(String(256), nullable=False)
	subject = Column(String(128), nullable=False)
	topic = Column(String(256), nullable=True)
	# Free-form label chosen by the teacher ("Easy", "Hard", "Practice", ...)
	level = Column(String(32), nullable=False, default="Medium")
	duration = Column(Integer, nullable=False, default=30)  # minutes
	number_of_questions = Column(Integer, nullable=False, default=0)
	created_by_id = Column(String(32), ForeignKey("auth_users.id", ondelete="CASCADE"), index=True, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	questions = relationship(
		"Question",
		order_by="Question.position",
		back_populates="quiz",
		cascade="all, delete-orphan",
	)
	assignments = relationship("QuizAssignment", back_populates="quiz", cascade="all, delete-orphan")
	results = relationship("QuizResult", back_populates="quiz", cascade="all, delete-orphan")


class Question(Base):
	__tablename__ = "questions"
	id = Column(String(32), primary_key=True, default=_new_id)
	quiz_id = Column(String(32), ForeignKey("quizzes.id", ondelete="CASCADE"), index=True, nullable=False)
	# Presentation order inside the quiz; grading walks questions in this order
	position = Column(Integer, nullable=False, default=0)
	content = Column(Text, nullable=False)
	options = Column(JSON, nullable=False, default=list)
	correct_answer = Column(Text, nullable=False)
	explanation = Column(Text, nullable=True)
	difficulty = Column(Enum(Difficulty), default=Difficulty.EASY, nullable=False)

	quiz = relationship("Quiz", back_populates="questions")


class QuizAssignment(Base):
	__tablename__ = "quiz_assignments"
	__table_args__ = (UniqueConstraint("quiz_id", "student_id", name="uq_assignment_quiz_student"),)
	id = Column(String(32), primary_key=True, default=_new_id)
	quiz_id = Column(String(32), ForeignKey("quizzes.id", ondelete="CASCADE"), index=True, nullable=False)
	student_id = Column(String(32), ForeignKey("auth_users.id", ondelete="CASCADE"), index=True, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	quiz = relationship("Quiz", back_populates="assignments")
	student = relationship("AuthUser")


class QuizResult(Base):
	__tablename__ = "quiz_results"
	# One submission per student per quiz
	__table_args__ = (UniqueConstraint("user_id", "quiz_id", name="uq_result_user_quiz"),)
	id = Column(String(32), primary_key=True, default=_new_id)
	user_id = Column(String(32), ForeignKey("auth_users.id", ondelete="CASCADE"), index=True, nullable=False)
	quiz_id = Column(String(32), ForeignKey("quizzes.id", ondelete="CASCADE"), index=True, nullable=False)
	score = Column(Integer, nullable=False)
	total_questions = Column(Integer, nullable=False)
	correct_answers = Column(Integer, nullable=False, default=0)
	time_taken = Column(Integer, nullable=False, default=0)  # seconds
	improvement_guidance = Column(Text, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	quiz = relationship("Quiz", back_populates="results")
	user = relationship("AuthUser")
	question_results = relationship(
		"QuestionResult",
		order_by="QuestionResult.position",
		back_populates="result",
		cascade="all, delete-orphan",
	)


class QuestionResult(Base):
	__tablename__ = "question_results"
	id = Column(String(32), primary_key=True, default=_new_id)
	result_id = Column(String(32), ForeignKey("quiz_results.id", ondelete="CASCADE"), index=True, nullable=False)
	question_id = Column(String(32), ForeignKey("questions.id", ondelete="CASCADE"), index=True, nullable=False)
	position = Column(Integer, nullable=False, default=0)
	user_answer = Column(Text, nullable=True)
	is_correct = Column(Boolean, nullable=False)
	# Level in effect when this answer was graded
	difficulty = Column(Enum(Difficulty), nullable=False)

	result = relationship("QuizResult", back_populates="question_results")
	question = relationship("Question")
