from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import get_db
from ..difficulty import Difficulty, grade_answers, get_next_question
from ..models import AuthUser, Question, Quiz, QuizAssignment, QuizResult, QuestionResult, UserRole
from ..question_bank import generate_improvement_guidance, generate_questions
from ..settings import settings
from .auth import User, get_current_user


router = APIRouter(prefix="/quiz", tags=["quiz"])

logger = logging.getLogger(__name__)


class SubmitRequest(BaseModel):
    quiz_id: str
    answers: List[Optional[str]]
    time_taken: int = Field(ge=0, description="Seconds spent on the quiz")


class PracticeRequest(BaseModel):
    subject: str
    topic: str


class NextQuestionRequest(BaseModel):
    current_difficulty: Difficulty = Difficulty.EASY
    answered_question_ids: List[str] = Field(default_factory=list)


def question_payload(q: Question, *, reveal: bool) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": q.id,
        "position": q.position,
        "content": q.content,
        "options": list(q.options or []),
        "difficulty": q.difficulty.value,
    }
    if reveal:
        payload["correct_answer"] = q.correct_answer
        payload["explanation"] = q.explanation
    return payload


def quiz_summary(quiz: Quiz) -> Dict[str, Any]:
    return {
        "id": quiz.id,
        "title": quiz.title,
        "subject": quiz.subject,
        "topic": quiz.topic,
        "level": quiz.level,
        "duration": quiz.duration,
        "number_of_questions": len(quiz.questions),
        "created_by_id": quiz.created_by_id,
        "created_at": quiz.created_at.isoformat() if quiz.created_at else None,
    }


def result_payload(result: QuizResult, *, include_questions: bool = True) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": result.id,
        "quiz_id": result.quiz_id,
        "quiz_title": result.quiz.title if result.quiz else None,
        "subject": result.quiz.subject if result.quiz else None,
        "user_id": result.user_id,
        "score": result.score,
        "total_questions": result.total_questions,
        "correct_answers": result.correct_answers,
        "time_taken": result.time_taken,
        "improvement_guidance": result.improvement_guidance,
        "created_at": result.created_at.isoformat() if result.created_at else None,
    }
    if include_questions:
        payload["question_results"] = [
            {
                "question_id": qr.question_id,
                "question": qr.question.content if qr.question else None,
                "user_answer": qr.user_answer,
                "is_correct": qr.is_correct,
                "correct_answer": qr.question.correct_answer if qr.question else None,
                "explanation": qr.question.explanation if qr.question else None,
                "difficulty": qr.difficulty.value,
            }
            for qr in result.question_results
        ]
    return payload


def can_take_quiz(db: Session, quiz: Quiz, user: User) -> bool:
    # Practice quizzes are owned by the student who generated them
    if quiz.created_by_id == user.id:
        return True
    assignment = (
        db.query(QuizAssignment)
        .filter(QuizAssignment.quiz_id == quiz.id, QuizAssignment.student_id == user.id)
        .first()
    )
    return assignment is not None


def _load_takeable_quiz(db: Session, quiz_id: str, user: User) -> Quiz:
    quiz = db.get(Quiz, quiz_id)
    if not quiz:
        raise HTTPException(status_code=404, detail="Quiz not found")
    if not can_take_quiz(db, quiz, user):
        raise HTTPException(status_code=403, detail="Quiz not assigned to user")
    return quiz


@router.get("/results")
async def list_results(quiz_id: Optional[str] = None, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    query = db.query(QuizResult).filter(QuizResult.user_id == user.id)
    if quiz_id:
        query = query.filter(QuizResult.quiz_id == quiz_id)
    results = query.order_by(QuizResult.created_at.desc()).all()
    return {"results": [result_payload(r) for r in results]}


@router.get("/results/{result_id}")
async def get_result(result_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    result = db.get(QuizResult, result_id)
    if not result:
        raise HTTPException(status_code=404, detail="Result not found")
    allowed = (
        result.user_id == user.id
        or user.role == UserRole.ADMIN
        or (user.role == UserRole.TEACHER and result.quiz.created_by_id == user.id)
    )
    if not allowed:
        raise HTTPException(status_code=403, detail="Not allowed to view this result")
    return result_payload(result)


@router.get("/leaderboard")
async def leaderboard(limit: int = 10, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    limit = max(1, min(limit, 100))
    avg_score = func.avg(QuizResult.score)
    rows = (
        db.query(AuthUser, avg_score.label("average_score"), func.count(QuizResult.id).label("quizzes_taken"))
        .join(QuizResult, QuizResult.user_id == AuthUser.id)
        .filter(AuthUser.role == UserRole.STUDENT)
        .group_by(AuthUser.id)
        .order_by(avg_score.desc(), func.count(QuizResult.id).desc(), AuthUser.username)
        .limit(limit)
        .all()
    )
    return {
        "leaderboard": [
            {
                "rank": idx + 1,
                "user_id": student.id,
                "name": student.display_name,
                "average_score": round(float(average or 0), 1),
                "quizzes_taken": int(taken),
            }
            for idx, (student, average, taken) in enumerate(rows)
        ]
    }


@router.post("/submit")
async def submit_quiz(req: SubmitRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    quiz = _load_takeable_quiz(db, req.quiz_id, user)

    existing = (
        db.query(QuizResult)
        .filter(QuizResult.user_id == user.id, QuizResult.quiz_id == quiz.id)
        .first()
    )
    if existing:
        raise HTTPException(status_code=400, detail="Quiz already submitted")

    questions = list(quiz.questions)
    if len(req.answers) != len(questions):
        raise HTTPException(
            status_code=400,
            detail=f"expected {len(questions)} answers, got {len(req.answers)}",
        )

    graded = grade_answers(questions, req.answers)
    score = graded.score

    incorrect = [
        {"question": q.content, "correct_answer": outcome.correct_answer, "user_answer": outcome.user_answer}
        for q, outcome in zip(questions, graded.results)
        if not outcome.is_correct
    ]
    guidance = await generate_improvement_guidance(quiz.subject, quiz.topic, score, incorrect)

    result = QuizResult(
        user_id=user.id,
        quiz_id=quiz.id,
        score=score,
        total_questions=len(questions),
        correct_answers=graded.correct_count,
        time_taken=req.time_taken,
        improvement_guidance=guidance,
    )
    for position, (question, outcome) in enumerate(zip(questions, graded.results)):
        result.question_results.append(
            QuestionResult(
                question_id=outcome.question_id,
                position=position,
                user_answer=outcome.user_answer,
                is_correct=outcome.is_correct,
                difficulty=outcome.difficulty,
            )
        )
        # The question keeps the level it was last answered at
        question.difficulty = outcome.difficulty
    db.add(result)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail="Quiz already submitted")
    logger.info(
        "User %s submitted quiz %s: %d/%d correct, score %d",
        user.username, quiz.id, graded.correct_count, len(questions), score,
    )

    payload = result_payload(result, include_questions=False)
    payload["question_results"] = [outcome.model_dump(mode="json") for outcome in graded.results]
    return payload


@router.post("/practice")
async def create_practice_quiz(req: PracticeRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    subject = (req.subject or "").strip()
    topic = (req.topic or "").strip()
    if not subject or not topic:
        raise HTTPException(status_code=400, detail="Missing subject or topic")

    count = settings.practice_question_count
    questions, used_ai = await generate_questions(subject, topic, "Practice", count)
    title = f"{subject} Practice Quiz: {topic}"
    quiz = Quiz(
        title=title,
        subject=subject,
        topic=topic,
        level="Practice",
        duration=settings.practice_duration_minutes,
        number_of_questions=len(questions),
        created_by_id=user.id,
    )
    for position, q in enumerate(questions):
        quiz.questions.append(
            Question(
                position=position,
                content=q.content,
                options=q.options,
                correct_answer=q.correct_answer,
                explanation=q.explanation,
            )
        )
    db.add(quiz)
    db.commit()
    logger.info("Created practice quiz %s for %s (ai=%s)", quiz.id, user.username, used_ai)
    return {"quiz_id": quiz.id, "title": quiz.title, "used_ai": used_ai, "number_of_questions": len(questions)}


@router.get("/{quiz_id}")
async def get_quiz_for_taking(quiz_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    quiz = _load_takeable_quiz(db, quiz_id, user)
    payload = quiz_summary(quiz)
    payload["questions"] = [question_payload(q, reveal=False) for q in quiz.questions]
    return payload


@router.post("/{quiz_id}/next-question")
async def next_question(quiz_id: str, req: NextQuestionRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    quiz = _load_takeable_quiz(db, quiz_id, user)
    chosen_id = get_next_question(quiz.questions, req.current_difficulty, set(req.answered_question_ids))
    if chosen_id is None:
        return {"finished": True, "question": None}
    chosen = next(q for q in quiz.questions if q.id == chosen_id)
    return {"finished": False, "question": question_payload(chosen, reveal=False)}
