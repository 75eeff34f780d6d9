import logging

from sqlalchemy.orm import Session

from . import ai_service, models, storage
from .errors import AppError, UpstreamCallError
from .schemas import OcrResult

logger = logging.getLogger(__name__)


def _store_result(db: Session, homework: models.Homework, raw_text: str, result: OcrResult) -> None:
    homework.ocr_text = raw_text
    homework.ocr_result = result.model_dump(by_alias=True)
    homework.ocr_status = "COMPLETED"
    if result.subject in models.SUBJECTS:
        homework.subject = result.subject
    else:
        logger.warning(f"OCR detected unknown subject {result.subject!r}; keeping {homework.subject}")

    offset = db.query(models.Question).filter(models.Question.homework_id == homework.id).count()
    for i, q in enumerate(result.questions, start=1):
        db.add(models.Question(
            homework_id=homework.id,
            ordinal=offset + i,
            question_number=q.question_number or str(offset + i),
            question_type=q.question_type,
            content=q.content,
            options=q.options,
            student_answer=q.student_answer,
        ))


def run_homework_ocr(db: Session, homework: models.Homework, image_url: str) -> OcrResult:
    """
    PENDING -> PROCESSING -> COMPLETED|FAILED. Not retried; on failure the
    homework is marked FAILED and the error propagates.
    """
    homework.ocr_status = "PROCESSING"
    db.commit()

    try:
        image = storage.fetch_image_as_data_url(image_url)
        raw_text, result = ai_service.run_ocr(image)
        _store_result(db, homework, raw_text, result)
        db.commit()
    except Exception as e:
        db.rollback()
        homework.ocr_status = "FAILED"
        db.commit()
        logger.error(f"OCR failed for homework {homework.id}: {e}")
        if isinstance(e, AppError):
            raise
        raise UpstreamCallError(str(e) or "OCR failed") from e

    logger.info(f"OCR completed for homework {homework.id}: {len(result.questions)} questions")
    return result
