from datetime import datetime, time, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models
from .database import utcnow

TREND_DAYS = 7
TOP_KNOWLEDGE_POINTS = 10
RECENT_PRACTICES = 10


def trend_window(now: datetime) -> List[str]:
    """ISO dates of today and the six days before it, oldest first."""
    today = now.date()
    return [(today - timedelta(days=i)).isoformat() for i in range(TREND_DAYS - 1, -1, -1)]


def daily_trend(db: Session, user_id: str, now: datetime) -> List[Dict[str, Any]]:
    M = models.Mistake
    days = trend_window(now)
    window_start = datetime.combine(now.date() - timedelta(days=TREND_DAYS - 1), time.min)
    buckets = {d: {"date": d, "mistakes": 0, "mastered": 0} for d in days}

    created = db.query(M.created_at).filter(M.user_id == user_id, M.created_at >= window_start).all()
    for (ts,) in created:
        key = ts.date().isoformat()
        if key in buckets:
            buckets[key]["mistakes"] += 1

    mastered = (
        db.query(M.last_mistake_at)
        .filter(M.user_id == user_id, M.mastered.is_(True), M.last_mistake_at >= window_start)
        .all()
    )
    for (ts,) in mastered:
        key = ts.date().isoformat()
        if key in buckets:
            buckets[key]["mastered"] += 1

    return [buckets[d] for d in days]


def _percent(part: int, whole: int) -> int:
    return int(round(part * 100 / whole)) if whole else 0


def compute_statistics(db: Session, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    M = models.Mistake

    total_mistakes = db.query(M).filter(M.user_id == user_id).count()
    mastered_mistakes = db.query(M).filter(M.user_id == user_id, M.mastered.is_(True)).count()
    total_homeworks = db.query(models.Homework).filter(models.Homework.user_id == user_id).count()
    total_practices = (
        db.query(models.Practice)
        .filter(models.Practice.user_id == user_id, models.Practice.status == "COMPLETED")
        .count()
    )

    subject_rows = (
        db.query(M.subject, func.count(M.id))
        .filter(M.user_id == user_id)
        .group_by(M.subject)
        .order_by(func.count(M.id).desc())
        .all()
    )
    type_rows = (
        db.query(M.question_type, func.count(M.id))
        .filter(M.user_id == user_id)
        .group_by(M.question_type)
        .order_by(func.count(M.id).desc())
        .all()
    )

    KP = models.KnowledgePoint
    top_points = (
        db.query(KP)
        .filter(KP.mistake_count > 0)
        .order_by(KP.mistake_count.desc(), KP.name)
        .limit(TOP_KNOWLEDGE_POINTS)
        .all()
    )

    P = models.Practice
    recent = (
        db.query(P)
        .filter(P.user_id == user_id, P.status == "COMPLETED", P.user_score.isnot(None))
        .order_by(P.completed_at.desc())
        .limit(RECENT_PRACTICES)
        .all()
    )

    return {
        "overview": {
            "total_mistakes": total_mistakes,
            "mastered_mistakes": mastered_mistakes,
            "unmastered_mistakes": total_mistakes - mastered_mistakes,
            "mastery_rate": _percent(mastered_mistakes, total_mistakes),
            "total_homeworks": total_homeworks,
            "total_practices": total_practices,
        },
        "subject_stats": [{"subject": s, "count": c} for s, c in subject_rows],
        "type_stats": [{"type": t, "count": c} for t, c in type_rows],
        "top_knowledge_points": [
            {"name": kp.name, "subject": kp.subject, "mistake_count": kp.mistake_count} for kp in top_points
        ],
        "trend_data": daily_trend(db, user_id, now),
        "practice_scores": [
            {
                "title": p.title,
                "score": p.user_score,
                "total_score": p.total_score,
                "percent": _percent(p.user_score or 0, p.total_score),
                "date": p.completed_at.date().isoformat() if p.completed_at else None,
            }
            for p in recent
        ],
    }
