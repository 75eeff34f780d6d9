import uuid

from sqlalchemy import Column, String, Integer, ForeignKey, DateTime, JSON, Boolean, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from .database import Base, utcnow

SUBJECTS = (
    "CHINESE", "MATH", "ENGLISH", "PHYSICS", "CHEMISTRY",
    "BIOLOGY", "HISTORY", "GEOGRAPHY", "POLITICS", "SCIENCE",
)

SUBJECT_LABELS = {
    "CHINESE": "语文", "MATH": "数学", "ENGLISH": "英语",
    "PHYSICS": "物理", "CHEMISTRY": "化学", "BIOLOGY": "生物",
    "HISTORY": "历史", "GEOGRAPHY": "地理", "POLITICS": "政治", "SCIENCE": "科学",
}

QUESTION_TYPES = ("CHOICE", "FILL_BLANK", "SHORT_ANSWER", "CALCULATION", "PROOF", "ESSAY", "OTHER")

OCR_STATUSES = ("PENDING", "PROCESSING", "COMPLETED", "FAILED")
CORRECTION_STATUSES = ("PENDING", "PROCESSING", "COMPLETED")
PRACTICE_TYPES = ("SIMILAR", "TARGETED", "REVIEW")
PRACTICE_STATUSES = ("PENDING", "IN_PROGRESS", "COMPLETED")


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    grade = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class Homework(Base):
    __tablename__ = "homeworks"

    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    title = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    image_url = Column(Text, nullable=False)
    image_path = Column(String, nullable=False)

    ocr_status = Column(String, default="PENDING", nullable=False)
    correction_status = Column(String, default="PENDING", nullable=False)
    ocr_text = Column(Text, nullable=True)     # raw model reply
    ocr_result = Column(JSON, nullable=True)   # validated structure

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    questions = relationship(
        "Question",
        back_populates="homework",
        order_by="Question.ordinal",
        cascade="all, delete-orphan",
    )


class Question(Base):
    __tablename__ = "questions"

    id = Column(String, primary_key=True, default=_new_id)
    homework_id = Column(String, ForeignKey("homeworks.id"), index=True, nullable=False)
    ordinal = Column(Integer, nullable=False, default=0)
    question_number = Column(String, nullable=False)
    question_type = Column(String, nullable=False, default="OTHER")
    content = Column(Text, nullable=False)
    options = Column(JSON, nullable=True)  # List of strings, choice questions only
    student_answer = Column(Text, nullable=True)

    # Grading; is_correct IS NULL means not graded yet
    is_correct = Column(Boolean, nullable=True, index=True)
    correct_answer = Column(Text, nullable=True)
    explanation = Column(Text, nullable=True)
    steps = Column(JSON, nullable=True)
    knowledge_points = Column(JSON, nullable=True)  # List of strings
    error_type = Column(String, nullable=True)
    encouragement = Column(Text, nullable=True)
    difficulty = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    homework = relationship("Homework", back_populates="questions")
    mistake = relationship("Mistake", back_populates="question", uselist=False)


class Mistake(Base):
    __tablename__ = "mistakes"

    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    question_id = Column(String, ForeignKey("questions.id"), unique=True, nullable=False)

    # Denormalized from the question at first wrong grading
    subject = Column(String, nullable=False, index=True)
    question_type = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    student_answer = Column(Text, nullable=False, default="")
    correct_answer = Column(Text, nullable=True)
    explanation = Column(Text, nullable=True)
    knowledge_points = Column(JSON, nullable=True)
    difficulty = Column(Integer, nullable=True)

    mistake_count = Column(Integer, nullable=False, default=1)
    mastered = Column(Boolean, nullable=False, default=False)
    last_mistake_at = Column(DateTime, default=utcnow)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    question = relationship("Question", back_populates="mistake")


class KnowledgePoint(Base):
    __tablename__ = "knowledge_points"

    id = Column(String, primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    mistake_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("name", "subject", name="uq_knowledge_point_name_subject"),
    )


class Practice(Base):
    __tablename__ = "practices"

    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    title = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    practice_type = Column(String, nullable=False, default="SIMILAR")

    # Ordered list of generated question dicts; annotated with userAnswer/isCorrect on submit
    questions = Column(JSON, nullable=False)

    total_score = Column(Integer, nullable=False)
    user_score = Column(Integer, nullable=True)
    status = Column(String, nullable=False, default="PENDING")
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
