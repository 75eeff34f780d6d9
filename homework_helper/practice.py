import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from . import ai_service, crud, models
from .database import utcnow
from .errors import ConflictError, NoMaterialError, NotFoundError
from .schemas import PracticeGenerateRequest

logger = logging.getLogger(__name__)

DEFAULT_QUESTION_SCORE = 10
TARGETED_LIMIT = 5
REVIEW_LIMIT = 10


def select_reference_mistakes(
    db: Session,
    user_id: str,
    mistake_id: Optional[str] = None,
    knowledge_point: Optional[str] = None,
    subject: Optional[str] = None,
) -> List[models.Mistake]:
    """Explicit mistake, else un-mastered mistakes on one knowledge point, else all un-mastered ones."""
    M = models.Mistake
    if mistake_id:
        mistake = db.query(M).filter(M.id == mistake_id, M.user_id == user_id).first()
        if not mistake:
            raise NotFoundError("Mistake not found")
        return [mistake]

    query = db.query(M).filter(M.user_id == user_id, M.mastered.is_(False))
    if knowledge_point and subject:
        return (
            query.filter(M.subject == subject, crud.json_list_contains(M.knowledge_points, knowledge_point))
            .order_by(M.mistake_count.desc(), M.last_mistake_at.desc())
            .limit(TARGETED_LIMIT)
            .all()
        )
    return (
        query.order_by(M.mistake_count.desc(), M.last_mistake_at.desc())
        .limit(REVIEW_LIMIT)
        .all()
    )


def generate_practice(db: Session, user_id: str, request: PracticeGenerateRequest) -> models.Practice:
    references = select_reference_mistakes(
        db, user_id, request.mistake_id, request.knowledge_point, request.subject
    )
    if not references:
        raise NoMaterialError()

    sheet = ai_service.generate_practice_sheet(references, request.question_count)
    questions = [q.model_dump(by_alias=True) for q in sheet.questions]

    label = models.SUBJECT_LABELS.get(request.subject or "", "综合")
    practice = models.Practice(
        user_id=user_id,
        title=(sheet.title or "").strip() or f"{label}专项练习",
        subject=request.subject or references[0].subject,
        practice_type=request.practice_type,
        questions=questions,
        total_score=sheet.total_score or len(questions) * DEFAULT_QUESTION_SCORE,
        status="PENDING",
    )
    db.add(practice)
    db.commit()
    db.refresh(practice)
    logger.info(f"Generated practice {practice.id} with {len(questions)} questions from {len(references)} mistakes")
    return practice


def answers_match(submitted: Optional[str], expected: Any) -> bool:
    submitted = (submitted or "").strip()
    if not submitted:
        return False
    return submitted.lower() == str(expected or "").strip().lower()


def score_answers(
    questions: List[Dict[str, Any]],
    answers: Mapping[int, Optional[str]],
) -> Tuple[List[Dict[str, Any]], int]:
    """Annotates each question with the submitted answer; returns (annotated, achieved score)."""
    total = 0
    results = []
    for index, q in enumerate(questions):
        user_answer = answers.get(index) or ""
        is_correct = answers_match(user_answer, q.get("answer"))
        if is_correct:
            total += q.get("score") or DEFAULT_QUESTION_SCORE
        results.append({**q, "userAnswer": user_answer, "isCorrect": is_correct})
    return results, total


def submit_practice(db: Session, practice: models.Practice, answers: Mapping[int, Optional[str]]) -> Tuple[List[Dict[str, Any]], int]:
    if practice.status == "COMPLETED":
        raise ConflictError("Practice has already been submitted")

    results, score = score_answers(list(practice.questions or []), answers)
    P = models.Practice
    # Conditional update so two concurrent submissions cannot both win.
    updated = (
        db.query(P)
        .filter(P.id == practice.id, P.status != "COMPLETED")
        .update(
            {P.questions: results, P.user_score: score, P.status: "COMPLETED", P.completed_at: utcnow()},
            synchronize_session=False,
        )
    )
    if not updated:
        db.rollback()
        raise ConflictError("Practice has already been submitted")
    db.commit()
    logger.info(f"Practice {practice.id} submitted: {score}/{practice.total_score}")
    return results, score
