from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import uuid

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from ..settings import settings
from sqlalchemy.orm import Session
from ..db import get_db
from ..models import AuthUser, AuthSession, UserRole

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)
logging.getLogger('passlib').setLevel(logging.ERROR)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"


class User(BaseModel):
	id: str
	username: str
	role: UserRole
	email: Optional[str] = None
	first_name: Optional[str] = None
	last_name: Optional[str] = None


def _to_user(row: AuthUser) -> User:
	return User(
		id=row.id,
		username=row.username,
		role=row.role,
		email=row.email,
		first_name=row.first_name,
		last_name=row.last_name,
	)


def hash_password(password: str) -> str:
	# bcrypt only looks at the first 72 bytes
	password_bytes = password.encode('utf-8')[:72]
	return pwd_context.hash(password_bytes.decode('utf-8', errors='ignore'))


def verify_password(plain_password: str, hashed_password: str) -> bool:
	password_bytes = plain_password.encode('utf-8')[:72]
	return pwd_context.verify(password_bytes.decode('utf-8', errors='ignore'), hashed_password)


def authenticate_user(db: Session, username: str, password: str) -> Optional[AuthUser]:
	row = db.query(AuthUser).filter(AuthUser.username == username).first()
	if not row or not row.is_active:
		return None
	if not verify_password(password, row.password_hash):
		return None
	return row


def ensure_seed_admin(db: Session) -> Optional[AuthUser]:
	username = settings.seed_admin_username
	password = settings.seed_admin_password
	if not username or not password:
		return None
	row = db.query(AuthUser).filter(AuthUser.username == username).first()
	if row:
		if row.role != UserRole.ADMIN:
			row.role = UserRole.ADMIN
			db.commit()
		return row
	row = AuthUser(username=username, password_hash=hash_password(password), role=UserRole.ADMIN)
	db.add(row)
	db.commit()
	logger.info("Seeded admin account %s", username)
	return row


def _resolve_expiry(expires_delta: Optional[timedelta]) -> datetime:
	delta = expires_delta
	if delta is None:
		minutes = getattr(settings, "access_token_expire_minutes", None)
		if isinstance(minutes, int) and minutes > 0:
			delta = timedelta(minutes=minutes)
		else:
			delta = timedelta(days=30)
	now = datetime.now(timezone.utc)
	try:
		return now + delta
	except OverflowError:
		return datetime.max.replace(tzinfo=timezone.utc)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = data.copy()
	expire = _resolve_expiry(expires_delta)
	to_encode.update({"exp": expire})
	encoded_jwt = jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
	return encoded_jwt


@router.post("/token", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
	row = authenticate_user(db, form_data.username, form_data.password)
	if not row:
		raise HTTPException(status_code=401, detail="Incorrect username or password")
	# Each login gets its own server-side session, referenced by the jti claim
	session_id = uuid.uuid4().hex
	access_token = create_access_token({"sub": row.id, "jti": session_id, "role": row.role.value})
	try:
		db.add(AuthSession(session_id=session_id, user_id=row.id))
		row.last_login_at = datetime.utcnow()
		db.commit()
	except Exception:
		db.rollback()
		logger.exception("Failed to persist session for %s", row.username)
		raise HTTPException(status_code=500, detail="Could not create session")
	return Token(access_token=access_token)


def _decode_token(token: str) -> tuple[str, str]:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
	except JWTError:
		raise credentials_exception
	user_id: str | None = payload.get("sub")
	jti: str | None = payload.get("jti")
	if user_id is None or jti is None:
		raise credentials_exception
	return user_id, jti


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	user_id, jti = _decode_token(token)
	# The session row must still exist, so a logout or admin purge revokes the token
	try:
		session_row = db.get(AuthSession, jti)
		if not session_row or session_row.user_id != user_id:
			raise credentials_exception
		row = db.get(AuthUser, user_id)
		if not row or not row.is_active:
			raise credentials_exception
		session_row.last_activity_at = datetime.utcnow()
		db.commit()
	except HTTPException:
		raise
	except Exception:
		# On DB errors, fail closed
		logger.exception("Session lookup failed")
		raise credentials_exception
	return _to_user(row)


def require_role(*roles: UserRole):
	def dependency(user: User = Depends(get_current_user)) -> User:
		if user.role not in roles:
			raise HTTPException(status_code=403, detail=f"requires role {' or '.join(r.value for r in roles)}")
		return user
	return dependency


@router.get("/me", response_model=User)
async def me(user: User = Depends(get_current_user)):
	return user


@router.post("/logout")
async def logout(token: str = Depends(oauth2_scheme), user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	_, jti = _decode_token(token)
	row = db.get(AuthSession, jti)
	if row:
		db.delete(row)
		db.commit()
	return {"ok": True}


class RegisterRequest(BaseModel):
	username: str
	password: str
	email: Optional[str] = None
	first_name: Optional[str] = None
	last_name: Optional[str] = None
	role: UserRole = UserRole.STUDENT


@router.post("/register", status_code=201, response_model=User)
async def register(req: RegisterRequest, db: Session = Depends(get_db)):
	username = (req.username or "").strip()
	password = req.password or ""
	if not username or not password:
		raise HTTPException(status_code=400, detail="username and password are required")
	if len(username) < 3 or len(username) > 128:
		raise HTTPException(status_code=400, detail="username must be 3-128 characters")
	if len(password) < 6:
		raise HTTPException(status_code=400, detail="password must be at least 6 characters")
	if req.role == UserRole.ADMIN:
		raise HTTPException(status_code=403, detail="admin accounts cannot be self-registered")
	existing = db.query(AuthUser).filter(AuthUser.username == username).first()
	if existing:
		raise HTTPException(status_code=409, detail="username already exists")
	row = AuthUser(
		username=username,
		password_hash=hash_password(password),
		email=(req.email or "").strip() or None,
		first_name=(req.first_name or "").strip() or None,
		last_name=(req.last_name or "").strip() or None,
		role=req.role,
	)
	db.add(row)
	db.commit()
	logger.info("Registered %s account %s", row.role.value, username)
	return _to_user(row)
