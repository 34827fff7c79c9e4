from __future__ import annotations
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./quizup.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


# Columns added after the first release; create_all() never alters existing tables
_LATE_COLUMNS = {
	"quizzes": {
		"topic": "ALTER TABLE quizzes ADD COLUMN topic VARCHAR(256)",
	},
	"quiz_results": {
		"improvement_guidance": "ALTER TABLE quiz_results ADD COLUMN improvement_guidance TEXT",
		"time_taken": "ALTER TABLE quiz_results ADD COLUMN time_taken INTEGER DEFAULT 0 NOT NULL",
	},
	"questions": {
		"difficulty": "ALTER TABLE questions ADD COLUMN difficulty VARCHAR(6) DEFAULT 'EASY' NOT NULL",
	},
}


# Best-effort lightweight migrations for development (SQLite-friendly)
def ensure_schema(bind=None) -> list[str]:
	bind = bind or engine
	applied: list[str] = []
	try:
		inspector = inspect(bind)
		tables = set(inspector.get_table_names())
	except Exception:
		return applied
	for table, columns in _LATE_COLUMNS.items():
		if table not in tables:
			continue
		existing = {c["name"] for c in inspector.get_columns(table)}
		with bind.begin() as conn:
			for name, ddl in columns.items():
				if name not in existing:
					conn.exec_driver_sql(ddl)
					applied.append(f"{table}.{name}")
	return applied
