# backend/stats.py
"""Read-only usage aggregation with a process-lifetime cache.

Every metric is computed independently so one failing query only zeroes that
metric. The public read path never raises: it serves the cached snapshot, a
stale snapshot, or a static fallback.
"""
import logging
import threading
import time
from datetime import datetime, timedelta, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

import models

logger = logging.getLogger("cvforge.stats")

CACHE_HIT = "HIT"
CACHE_MISS = "MISS"
CACHE_STALE = "STALE"
CACHE_FALLBACK = "FALLBACK"

DAILY_WINDOW_DAYS = 30


class StatsUnavailable(Exception):
    """Raised when no metric at all could be computed."""


def start_of_today(now: datetime = None) -> datetime:
    now = now or models.utcnow()
    return now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


def count_users(db: Session) -> int:
    return db.query(func.count(models.User.id)).scalar() or 0

def count_pro_users(db: Session) -> int:
    return db.query(func.count(models.User.id)).filter(models.User.is_pro.is_(True)).scalar() or 0

def count_active_today(db: Session) -> int:
    return db.query(func.count(models.User.id)).filter(models.User.last_login >= start_of_today()).scalar() or 0

def count_cvs(db: Session) -> int:
    return db.query(func.count(models.CVRecord.id)).scalar() or 0

def sum_generations(db: Session) -> int:
    return db.query(func.coalesce(func.sum(models.User.total_generations), 0)).scalar() or 0


DEFAULT_METRICS = {
    "totalUsers": count_users,
    "proUsers": count_pro_users,
    "activeToday": count_active_today,
    "cvCount": count_cvs,
    "generationSum": sum_generations,
}


def fallback_snapshot() -> dict:
    return {
        "totalUsers": 0,
        "proUsers": 0,
        "freeUsers": 0,
        "activeToday": 0,
        "totalGenerations": 0,
        "lastUpdated": models.utcnow().isoformat(),
    }


class StatsAggregator:
    def __init__(self, ttl_seconds: float = 300, metrics: dict = None, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.metrics = dict(metrics or DEFAULT_METRICS)
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot = None
        self._computed_at = None

    def compute(self, db: Session) -> dict:
        values = {}
        failed = []
        for name, metric in self.metrics.items():
            try:
                values[name] = int(metric(db))
            except Exception as e:
                db.rollback()
                logger.warning("Stats metric %s failed, defaulting to 0: %s", name, e)
                values[name] = 0
                failed.append(name)
        if failed and len(failed) == len(self.metrics):
            raise StatsUnavailable(f"All stats metrics failed: {', '.join(failed)}")

        total = values.get("totalUsers", 0)
        pro = values.get("proUsers", 0)
        return {
            "totalUsers": total,
            "proUsers": pro,
            "freeUsers": max(0, total - pro),
            "activeToday": values.get("activeToday", 0),
            "totalGenerations": max(values.get("cvCount", 0), values.get("generationSum", 0)),
            "lastUpdated": models.utcnow().isoformat(),
        }

    def get(self, db: Session):
        """Returns (snapshot, cache_state)."""
        now = self._clock()
        with self._lock:
            if self._snapshot is not None and now - self._computed_at < self.ttl_seconds:
                return self._snapshot, CACHE_HIT

        try:
            snapshot = self.compute(db)
        except Exception:
            logger.exception("Stats recomputation failed")
            with self._lock:
                if self._snapshot is not None:
                    return self._snapshot, CACHE_STALE
            return fallback_snapshot(), CACHE_FALLBACK

        with self._lock:
            self._snapshot = snapshot
            self._computed_at = now
        return snapshot, CACHE_MISS


def daily_cv_counts(db: Session, days: int = DAILY_WINDOW_DAYS):
    """CVs created per UTC day over the last `days` days, oldest first."""
    since = start_of_today() - timedelta(days=days - 1)
    created = db.query(models.CVRecord.created_at).filter(models.CVRecord.created_at >= since).all()
    counts = {}
    for (created_at,) in created:
        day = models.as_utc(created_at).date().isoformat()
        counts[day] = counts.get(day, 0) + 1
    return [{"date": day, "generations": counts[day]} for day in sorted(counts)]


def user_summaries(db: Session):
    return [
        {
            "id": user.id,
            "email": user.email,
            "displayName": user.display_name,
            "isPro": user.is_pro,
            "lastLogin": user.last_login.isoformat() if user.last_login else None,
        }
        for user in db.query(models.User).all()
    ]
