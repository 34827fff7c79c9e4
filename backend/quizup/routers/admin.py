from __future__ import annotations
import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import AuthUser, TeacherStudent, UserRole
from .auth import User, require_role

router = APIRouter(prefix="/admin", tags=["admin"])

logger = logging.getLogger(__name__)

admin_only = require_role(UserRole.ADMIN)


class UpdateRoleRequest(BaseModel):
	user_id: str
	role: UserRole


def _user_payload(row: AuthUser) -> dict:
	return {
		"id": row.id,
		"username": row.username,
		"email": row.email,
		"first_name": row.first_name,
		"last_name": row.last_name,
		"role": row.role.value,
		"is_active": row.is_active,
		"last_login_at": row.last_login_at.isoformat() if row.last_login_at else None,
		"created_at": row.created_at.isoformat() if row.created_at else None,
	}


@router.get("/users")
async def list_users(admin: User = Depends(admin_only), db: Session = Depends(get_db)):
	users = db.query(AuthUser).order_by(AuthUser.created_at.desc()).all()
	stats = {
		"total_users": len(users),
		"total_students": sum(1 for u in users if u.role == UserRole.STUDENT),
		"total_teachers": sum(1 for u in users if u.role == UserRole.TEACHER),
		"total_admins": sum(1 for u in users if u.role == UserRole.ADMIN),
	}
	return {"users": [_user_payload(u) for u in users], "stats": stats}


@router.post("/update-role")
async def update_role(req: UpdateRoleRequest, admin: User = Depends(admin_only), db: Session = Depends(get_db)):
	if req.user_id == admin.id:
		raise HTTPException(status_code=400, detail="Admins cannot change their own role")
	row = db.get(AuthUser, req.user_id)
	if not row:
		raise HTTPException(status_code=404, detail="User not found")
	previous = row.role
	if previous != req.role:
		# Links only make sense for the role they were made under
		if previous == UserRole.TEACHER:
			db.query(TeacherStudent).filter(TeacherStudent.teacher_id == row.id).delete()
		elif previous == UserRole.STUDENT:
			db.query(TeacherStudent).filter(TeacherStudent.student_id == row.id).delete()
		row.role = req.role
		db.commit()
		logger.info("Admin %s changed role of %s: %s -> %s", admin.username, row.username, previous.value, req.role.value)
	return {"success": True, "user": _user_payload(row)}
