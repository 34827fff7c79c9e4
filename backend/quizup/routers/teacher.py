from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import get_db
from ..difficulty import Difficulty
from ..models import AuthUser, Question, Quiz, QuizAssignment, QuizResult, TeacherStudent, UserRole
from ..question_bank import OPTIONS_PER_QUESTION, generate_questions
from .auth import User, require_role
from .quiz import question_payload, quiz_summary, result_payload


router = APIRouter(prefix="/teacher", tags=["teacher"])

logger = logging.getLogger(__name__)

teacher_only = require_role(UserRole.TEACHER)

ACTIVE_WINDOW_DAYS = 7


class CreateQuizRequest(BaseModel):
    title: str
    subject: str
    topic: Optional[str] = None
    level: str = "Medium"
    duration: int = Field(gt=0, description="Minutes")
    num_questions: int = Field(gt=0, le=50)


class ManualQuestion(BaseModel):
    content: str
    options: List[str] = Field(min_length=2)
    correct_answer: str
    explanation: Optional[str] = None
    difficulty: Difficulty = Difficulty.EASY


class ManualQuizRequest(BaseModel):
    title: str
    subject: str
    topic: Optional[str] = None
    level: str = "Medium"
    duration: int = Field(gt=0, description="Minutes")
    questions: List[ManualQuestion] = Field(min_length=1)


class AssignRequest(BaseModel):
    student_ids: List[str] = Field(min_length=1)


class LinkStudentRequest(BaseModel):
    username: str


def _student_payload(student: AuthUser) -> Dict[str, Any]:
    return {
        "id": student.id,
        "username": student.username,
        "first_name": student.first_name,
        "last_name": student.last_name,
        "email": student.email,
        "name": student.display_name,
    }


def _get_owned_quiz(db: Session, quiz_id: str, teacher: User) -> Quiz:
    quiz = db.get(Quiz, quiz_id)
    if not quiz or quiz.created_by_id != teacher.id:
        raise HTTPException(status_code=404, detail="Quiz not found or access denied")
    return quiz


def _linked_student_ids(db: Session, teacher_id: str) -> Set[str]:
    rows = db.query(TeacherStudent.student_id).filter(TeacherStudent.teacher_id == teacher_id).all()
    return {row[0] for row in rows}


def _assign(db: Session, quiz: Quiz, student_ids: Set[str]) -> int:
    already = {
        row[0]
        for row in db.query(QuizAssignment.student_id).filter(QuizAssignment.quiz_id == quiz.id).all()
    }
    created = 0
    for student_id in sorted(student_ids - already):
        db.add(QuizAssignment(quiz_id=quiz.id, student_id=student_id))
        created += 1
    return created


def _create_quiz(
    db: Session,
    teacher: User,
    *,
    title: str,
    subject: str,
    topic: Optional[str],
    level: str,
    duration: int,
    questions: List[Dict[str, Any]],
) -> Quiz:
    quiz = Quiz(
        title=title,
        subject=subject,
        topic=topic,
        level=level,
        duration=duration,
        number_of_questions=len(questions),
        created_by_id=teacher.id,
    )
    for position, q in enumerate(questions):
        quiz.questions.append(Question(position=position, **q))
    db.add(quiz)
    db.flush()
    return quiz


@router.post("/quizzes", status_code=201)
async def create_quiz(req: CreateQuizRequest, teacher: User = Depends(teacher_only), db: Session = Depends(get_db)):
    subject = req.subject.strip()
    if not subject or not req.level.strip():
        raise HTTPException(status_code=400, detail="Missing required fields")
    topic = (req.topic or "").strip() or None
    generated, used_ai = await generate_questions(subject, topic, req.level, req.num_questions)
    quiz = _create_quiz(
        db,
        teacher,
        title=req.title.strip() or f"{subject} Quiz ({req.level})",
        subject=subject,
        topic=topic,
        level=req.level,
        duration=req.duration,
        questions=[
            {
                "content": q.content,
                "options": q.options,
                "correct_answer": q.correct_answer,
                "explanation": q.explanation,
            }
            for q in generated
        ],
    )
    # New quizzes go to every student linked to the teacher
    assigned = _assign(db, quiz, _linked_student_ids(db, teacher.id))
    db.commit()
    logger.info("Teacher %s created quiz %s (%d questions, ai=%s, assigned=%d)", teacher.username, quiz.id, len(generated), used_ai, assigned)
    return {
        "success": True,
        "quiz": {"id": quiz.id, "title": quiz.title},
        "used_ai": used_ai,
        "number_of_questions": len(generated),
        "assigned_count": assigned,
    }


@router.post("/quizzes/manual", status_code=201)
async def create_manual_quiz(req: ManualQuizRequest, teacher: User = Depends(teacher_only), db: Session = Depends(get_db)):
    questions: List[Dict[str, Any]] = []
    for idx, q in enumerate(req.questions, start=1):
        options = [o.strip() for o in q.options]
        if len(options) > OPTIONS_PER_QUESTION or any(not o for o in options) or len(set(options)) != len(options):
            raise HTTPException(status_code=400, detail=f"question {idx}: options must be 2-{OPTIONS_PER_QUESTION} distinct non-empty strings")
        if q.correct_answer.strip() not in options:
            raise HTTPException(status_code=400, detail=f"question {idx}: correct_answer must be one of the options")
        if not q.content.strip():
            raise HTTPException(status_code=400, detail=f"question {idx}: content is required")
        questions.append(
            {
                "content": q.content.strip(),
                "options": options,
                "correct_answer": q.correct_answer.strip(),
                "explanation": q.explanation,
                "difficulty": q.difficulty,
            }
        )
    quiz = _create_quiz(
        db,
        teacher,
        title=req.title.strip() or f"{req.subject} Quiz ({req.level})",
        subject=req.subject.strip(),
        topic=(req.topic or "").strip() or None,
        level=req.level,
        duration=req.duration,
        questions=questions,
    )
    assigned = _assign(db, quiz, _linked_student_ids(db, teacher.id))
    db.commit()
    return {"success": True, "quiz": {"id": quiz.id, "title": quiz.title}, "assigned_count": assigned}


@router.get("/quizzes")
async def list_quizzes(teacher: User = Depends(teacher_only), db: Session = Depends(get_db)):
    quizzes = (
        db.query(Quiz)
        .filter(Quiz.created_by_id == teacher.id)
        .order_by(Quiz.created_at.desc())
        .all()
    )
    items = []
    for quiz in quizzes:
        scores = [r.score for r in quiz.results]
        item = quiz_summary(quiz)
        item["assigned_count"] = len(quiz.assignments)
        item["completed_count"] = len(scores)
        item["average_score"] = round(sum(scores) / len(scores), 1) if scores else None
        items.append(item)
    return {"quizzes": items}


@router.get("/quizzes/{quiz_id}")
async def get_quiz(quiz_id: str, teacher: User = Depends(teacher_only), db: Session = Depends(get_db)):
    quiz = _get_owned_quiz(db, quiz_id, teacher)
    payload = quiz_summary(quiz)
    payload["questions"] = [question_payload(q, reveal=True) for q in quiz.questions]
    payload["assigned_to"] = [_student_payload(a.student) for a in quiz.assignments]
    return {"quiz": payload}


@router.delete("/quizzes/{quiz_id}")
async def delete_quiz(quiz_id: str, teacher: User = Depends(teacher_only), db: Session = Depends(get_db)):
    quiz = _get_owned_quiz(db, quiz_id, teacher)
    # Assignments, results and questions go with it through the ORM cascades
    db.delete(quiz)
    db.commit()
    logger.info("Teacher %s deleted quiz %s", teacher.username, quiz_id)
    return {"success": True, "message": "Quiz deleted successfully"}


@router.get("/quizzes/{quiz_id}/results")
async def quiz_results(quiz_id: str, teacher: User = Depends(teacher_only), db: Session = Depends(get_db)):
    quiz = _get_owned_quiz(db, quiz_id, teacher)
    results = sorted(quiz.results, key=lambda r: r.created_at, reverse=True)
    return {
        "results": [
            {**result_payload(r), "student": _student_payload(r.user)}
            for r in results
        ],
        "students": [_student_payload(a.student) for a in quiz.assignments],
    }


@router.post("/quizzes/{quiz_id}/assign")
async def assign_quiz(quiz_id: str, req: AssignRequest, teacher: User = Depends(teacher_only), db: Session = Depends(get_db)):
    quiz = _get_owned_quiz(db, quiz_id, teacher)
    requested = set(req.student_ids)
    unknown = requested - _linked_student_ids(db, teacher.id)
    if unknown:
        raise HTTPException(status_code=400, detail=f"not your students: {', '.join(sorted(unknown))}")
    created = _assign(db, quiz, requested)
    db.commit()
    logger.info("Teacher %s assigned quiz %s to %d new students", teacher.username, quiz.id, created)
    return {
        "message": "Quiz assigned successfully",
        "created": created,
        "assigned_to": sorted(requested),
    }


@router.get("/students")
async def list_students(teacher: User = Depends(teacher_only), db: Session = Depends(get_db)):
    links = (
        db.query(TeacherStudent)
        .filter(TeacherStudent.teacher_id == teacher.id)
        .order_by(TeacherStudent.created_at)
        .all()
    )
    return {"students": [_student_payload(link.student) for link in links]}


@router.post("/students", status_code=201)
async def link_student(req: LinkStudentRequest, teacher: User = Depends(teacher_only), db: Session = Depends(get_db)):
    student = db.query(AuthUser).filter(AuthUser.username == req.username.strip()).first()
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")
    if student.role != UserRole.STUDENT:
        raise HTTPException(status_code=400, detail="User is not a student")
    link = (
        db.query(TeacherStudent)
        .filter(TeacherStudent.teacher_id == teacher.id, TeacherStudent.student_id == student.id)
        .first()
    )
    if not link:
        db.add(TeacherStudent(teacher_id=teacher.id, student_id=student.id))
        db.commit()
    return {"student": _student_payload(student)}


@router.delete("/students/{student_id}")
async def unlink_student(student_id: str, teacher: User = Depends(teacher_only), db: Session = Depends(get_db)):
    link = (
        db.query(TeacherStudent)
        .filter(TeacherStudent.teacher_id == teacher.id, TeacherStudent.student_id == student_id)
        .first()
    )
    if not link:
        raise HTTPException(status_code=404, detail="Student not linked")
    db.delete(link)
    db.commit()
    return {"ok": True}


@router.get("/dashboard")
async def dashboard(teacher: User = Depends(teacher_only), db: Session = Depends(get_db)):
    quiz_count = db.query(func.count(Quiz.id)).filter(Quiz.created_by_id == teacher.id).scalar() or 0
    student_count = len(_linked_student_ids(db, teacher.id))
    results_query = (
        db.query(QuizResult)
        .join(Quiz, Quiz.id == QuizResult.quiz_id)
        .filter(Quiz.created_by_id == teacher.id)
    )
    average = results_query.with_entities(func.avg(QuizResult.score)).scalar()
    recent = results_query.order_by(QuizResult.created_at.desc()).limit(5).all()
    return {
        "total_quizzes": quiz_count,
        "total_students": student_count,
        "total_submissions": results_query.count(),
        "average_score": round(float(average), 1) if average is not None else None,
        "recent_results": [
            {**result_payload(r, include_questions=False), "student": _student_payload(r.user)}
            for r in recent
        ],
    }


@router.get("/active-students")
async def active_students(teacher: User = Depends(teacher_only), db: Session = Depends(get_db)):
    since = datetime.utcnow() - timedelta(days=ACTIVE_WINDOW_DAYS)
    linked = _linked_student_ids(db, teacher.id)
    if not linked:
        return {"total_students": 0, "active_students": 0, "students": []}
    active_ids = {
        row[0]
        for row in db.query(QuizResult.user_id)
        .filter(QuizResult.user_id.in_(linked), QuizResult.created_at >= since)
        .distinct()
        .all()
    }
    students = db.query(AuthUser).filter(AuthUser.id.in_(active_ids)).order_by(AuthUser.username).all() if active_ids else []
    return {
        "total_students": len(linked),
        "active_students": len(active_ids),
        "students": [_student_payload(s) for s in students],
    }
