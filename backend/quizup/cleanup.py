from __future__ import annotations
import logging
from datetime import datetime, timedelta
from sqlalchemy import delete
from sqlalchemy.orm import Session

from .models import AuthSession
from .settings import settings

logger = logging.getLogger(__name__)


def purge_idle_sessions(db: Session, *, days: int | None = None) -> int:
	# Tokens whose session row is gone are rejected by get_current_user
	retention = settings.session_retention_days if days is None else days
	threshold = datetime.utcnow() - timedelta(days=retention)
	res = db.execute(delete(AuthSession).where(AuthSession.last_activity_at < threshold))
	db.commit()
	removed = res.rowcount or 0
	if removed:
		logger.info("Purged %d auth sessions idle since %s", removed, threshold.isoformat())
	return removed
