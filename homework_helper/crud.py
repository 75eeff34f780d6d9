import json
import math
import uuid
from typing import Any, Dict, List, Tuple

from sqlalchemy import String, cast
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Query, Session

from . import models
from .database import utcnow
from .schemas import CorrectionVerdict


def _native_insert(db: Session, table):
    """INSERT construct with ON CONFLICT support for the bound dialect, or None."""
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite_insert(table)
    if dialect == "postgresql":
        return pg_insert(table)
    return None


def paginate(query: Query, page: int, limit: int) -> Tuple[List[Any], Dict[str, int]]:
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": math.ceil(total / limit) if limit else 0,
    }


def json_list_contains(column, value: str):
    # Matches a whole element of a JSON string list, e.g. '"一元二次方程"'.
    return cast(column, String).contains(json.dumps(value, ensure_ascii=False), autoescape=True)


def increment_knowledge_point(db: Session, name: str, subject: str) -> None:
    """Create the (name, subject) counter at 1 or add 1, atomically where the dialect allows."""
    KP = models.KnowledgePoint
    now = utcnow()
    stmt = _native_insert(db, KP.__table__)
    if stmt is not None:
        stmt = stmt.values(
            id=str(uuid.uuid4()),
            name=name,
            subject=subject,
            description=f"{name}相关知识点",
            mistake_count=1,
            created_at=now,
            updated_at=now,
        ).on_conflict_do_update(
            index_elements=["name", "subject"],
            set_={"mistake_count": KP.__table__.c.mistake_count + 1, "updated_at": now},
        )
        db.execute(stmt)
        return

    updated = (
        db.query(KP)
        .filter(KP.name == name, KP.subject == subject)
        .update({KP.mistake_count: KP.mistake_count + 1, KP.updated_at: now}, synchronize_session=False)
    )
    if not updated:
        db.add(KP(name=name, subject=subject, description=f"{name}相关知识点", mistake_count=1))
        db.flush()


def record_mistake(db: Session, question: models.Question, verdict: CorrectionVerdict, user_id: str) -> None:
    """First wrong grading creates the mistake; later ones bump the count and reset mastered."""
    M = models.Mistake
    now = utcnow()
    stmt = _native_insert(db, M.__table__)
    if stmt is not None:
        stmt = stmt.values(
            id=str(uuid.uuid4()),
            user_id=user_id,
            question_id=question.id,
            subject=question.homework.subject,
            question_type=question.question_type,
            content=question.content,
            student_answer=question.student_answer or "",
            correct_answer=verdict.correct_answer,
            explanation=verdict.explanation,
            knowledge_points=verdict.knowledge_points,
            difficulty=verdict.difficulty,
            mistake_count=1,
            mastered=False,
            last_mistake_at=now,
            created_at=now,
            updated_at=now,
        ).on_conflict_do_update(
            index_elements=["question_id"],
            set_={
                "mistake_count": M.__table__.c.mistake_count + 1,
                "mastered": False,
                "last_mistake_at": now,
                "updated_at": now,
            },
        )
        db.execute(stmt)
        return

    updated = (
        db.query(M)
        .filter(M.question_id == question.id)
        .update(
            {M.mistake_count: M.mistake_count + 1, M.mastered: False, M.last_mistake_at: now, M.updated_at: now},
            synchronize_session=False,
        )
    )
    if not updated:
        db.add(M(
            user_id=user_id,
            question_id=question.id,
            subject=question.homework.subject,
            question_type=question.question_type,
            content=question.content,
            student_answer=question.student_answer or "",
            correct_answer=verdict.correct_answer,
            explanation=verdict.explanation,
            knowledge_points=verdict.knowledge_points,
            difficulty=verdict.difficulty,
            last_mistake_at=now,
        ))
        db.flush()
