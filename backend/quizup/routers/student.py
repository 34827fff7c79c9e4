from __future__ import annotations
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import QuizAssignment, QuizResult, UserRole
from .auth import User, require_role

router = APIRouter(prefix="/student", tags=["student"])

student_only = require_role(UserRole.STUDENT)


@router.get("/assigned-quizzes")
async def assigned_quizzes(user: User = Depends(student_only), db: Session = Depends(get_db)):
	assignments = (
		db.query(QuizAssignment)
		.filter(QuizAssignment.student_id == user.id)
		.order_by(QuizAssignment.created_at.desc())
		.all()
	)
	results = {
		r.quiz_id: r
		for r in db.query(QuizResult).filter(QuizResult.user_id == user.id).all()
	}
	quizzes = []
	for a in assignments:
		result = results.get(a.quiz_id)
		quizzes.append({
			"id": a.quiz.id,
			"title": a.quiz.title,
			"subject": a.quiz.subject,
			"topic": a.quiz.topic,
			"level": a.quiz.level,
			"time_limit": a.quiz.duration,
			"total_questions": len(a.quiz.questions),
			"assigned_date": a.created_at.isoformat() if a.created_at else None,
			"status": "Completed" if result else "Assigned",
			"score": result.score if result else None,
			"result_id": result.id if result else None,
		})
	return {"quizzes": quizzes}


@router.get("/dashboard")
async def dashboard(user: User = Depends(student_only), db: Session = Depends(get_db)):
	results = (
		db.query(QuizResult)
		.filter(QuizResult.user_id == user.id)
		.order_by(QuizResult.created_at)
		.all()
	)
	assigned_ids = {
		row[0]
		for row in db.query(QuizAssignment.quiz_id).filter(QuizAssignment.student_id == user.id).all()
	}
	completed_ids = {r.quiz_id for r in results}
	scores = [r.score for r in results]
	by_subject: dict[str, list[int]] = {}
	for r in results:
		by_subject.setdefault(r.quiz.subject, []).append(r.score)
	return {
		"assigned": len(assigned_ids),
		"completed": len(results),
		"pending": len(assigned_ids - completed_ids),
		"average_score": round(sum(scores) / len(scores), 1) if scores else None,
		"best_score": max(scores) if scores else None,
		# Chronological scores for the progress chart
		"progress": [
			{"quiz_id": r.quiz_id, "title": r.quiz.title, "score": r.score, "date": r.created_at.isoformat()}
			for r in results
		],
		"subjects": [
			{"subject": subject, "average_score": round(sum(s) / len(s), 1), "quizzes": len(s)}
			for subject, s in sorted(by_subject.items())
		],
	}
