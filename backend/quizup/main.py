import asyncio
import logging

from fastapi import FastAPI

from .db import Base, engine, SessionLocal, ensure_schema
from .cleanup import purge_idle_sessions
from .settings import settings
from .routers import health
from .routers import auth
from .routers import teacher
from .routers import student
from .routers import quiz
from .routers import admin

logging.basicConfig(
	level=getattr(logging, settings.log_level.upper(), logging.INFO),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("quizup")

app = FastAPI(title="QuizUp API")
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(teacher.router)
app.include_router(student.router)
app.include_router(quiz.router)
app.include_router(admin.router)


def _run_cleanup() -> None:
	db = SessionLocal()
	try:
		purge_idle_sessions(db)
	except Exception:
		logger.exception("Session cleanup failed")
	finally:
		db.close()


async def _cleanup_watcher():
	while True:
		await asyncio.sleep(24 * 60 * 60)
		_run_cleanup()


@app.on_event("startup")
async def startup_event():
	Base.metadata.create_all(bind=engine)
	try:
		applied = ensure_schema()
		if applied:
			logger.info("Added columns: %s", ", ".join(applied))
	except Exception:
		logger.exception("Schema upgrade failed")
	db = SessionLocal()
	try:
		auth.ensure_seed_admin(db)
	finally:
		db.close()
	_run_cleanup()
	asyncio.create_task(_cleanup_watcher())
