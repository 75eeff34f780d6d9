import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from . import ai_service, crud, models
from .schemas import CorrectionVerdict
from .errors import NotFoundError

logger = logging.getLogger(__name__)


def _owned_homework(db: Session, homework_id: str, user_id: str) -> models.Homework:
    homework = db.query(models.Homework).filter(models.Homework.id == homework_id).first()
    if not homework or homework.user_id != user_id:
        raise NotFoundError("Homework not found")
    return homework


def select_questions(
    db: Session,
    user_id: str,
    homework_id: Optional[str] = None,
    question_id: Optional[str] = None,
) -> Tuple[Optional[models.Homework], List[models.Question]]:
    """A single question by id, else every ungraded question of the homework."""
    homework = _owned_homework(db, homework_id, user_id) if homework_id else None

    if question_id:
        query = (
            db.query(models.Question)
            .join(models.Homework)
            .filter(models.Question.id == question_id, models.Homework.user_id == user_id)
        )
        if homework is not None:
            query = query.filter(models.Question.homework_id == homework.id)
        question = query.first()
        if not question:
            raise NotFoundError("Question not found")
        return homework, [question]

    questions = (
        db.query(models.Question)
        .filter(models.Question.homework_id == homework.id, models.Question.is_correct.is_(None))
        .order_by(models.Question.ordinal)
        .all()
    )
    return homework, questions


def apply_verdict(db: Session, question: models.Question, verdict: CorrectionVerdict, user_id: str) -> None:
    """Writes the verdict; a wrong answer also files the mistake and bumps its knowledge points."""
    question.is_correct = verdict.is_correct
    question.correct_answer = verdict.correct_answer
    question.explanation = verdict.explanation
    question.steps = verdict.steps
    question.knowledge_points = verdict.knowledge_points
    question.error_type = verdict.error_type if not verdict.is_correct else None
    question.encouragement = verdict.encouragement
    question.difficulty = verdict.difficulty
    db.flush()

    if verdict.is_correct:
        return

    crud.record_mistake(db, question, verdict, user_id)
    subject = question.homework.subject
    for name in dict.fromkeys(verdict.knowledge_points):
        crud.increment_knowledge_point(db, name, subject)


def grade_one(db: Session, question: models.Question, user_id: str) -> Dict[str, Any]:
    verdict = ai_service.grade_question(
        question.homework.subject,
        question.question_type,
        question.content,
        question.student_answer or "",
    )
    # Question, mistake and knowledge point writes commit together.
    apply_verdict(db, question, verdict, user_id)
    db.commit()
    return {
        "question_id": question.id,
        "is_correct": verdict.is_correct,
        "correct_answer": verdict.correct_answer,
        "explanation": verdict.explanation,
        "encouragement": verdict.encouragement,
    }


def run_correction(
    db: Session,
    user_id: str,
    homework_id: Optional[str] = None,
    question_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    homework, questions = select_questions(db, user_id, homework_id, question_id)
    if not questions:
        return []

    if homework is not None:
        homework.correction_status = "PROCESSING"
        db.commit()

    results: List[Dict[str, Any]] = []
    for question in questions:
        qid = question.id
        try:
            results.append(grade_one(db, question, user_id))
        except Exception:
            db.rollback()
            logger.exception(f"Grading question {qid} failed, skipping")
            continue

    if homework is not None:
        homework.correction_status = "COMPLETED"
        db.commit()

    logger.info(f"Graded {len(results)}/{len(questions)} questions for user {user_id}")
    return results
