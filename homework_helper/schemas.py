import re
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, get_args
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Subject = Literal[
    "CHINESE", "MATH", "ENGLISH", "PHYSICS", "CHEMISTRY",
    "BIOLOGY", "HISTORY", "GEOGRAPHY", "POLITICS", "SCIENCE",
]
QuestionType = Literal["CHOICE", "FILL_BLANK", "SHORT_ANSWER", "CALCULATION", "PROOF", "ESSAY", "OTHER"]
PracticeType = Literal["SIMILAR", "TARGETED", "REVIEW"]
PracticeStatus = Literal["PENDING", "IN_PROGRESS", "COMPLETED"]

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_DATA_URL_RE = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,[A-Za-z0-9+/=\s]+$")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def _coerce_str_list(v: Any) -> List[str]:
    if v is None:
        return []
    if isinstance(v, str):
        parts = re.split(r"[,，、;；]", v)
        return [p.strip() for p in parts if p.strip()]
    if isinstance(v, (list, tuple)):
        return [str(x).strip() for x in v if x is not None and str(x).strip()]
    s = str(v).strip()
    return [s] if s else []


def _coerce_text(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, (list, tuple)):
        return "\n".join(str(x) for x in v if x is not None)
    return str(v)


def is_valid_image_url(value: str) -> bool:
    if value.startswith("data:"):
        return bool(_DATA_URL_RE.match(value))
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


# --- Auth Schemas ---

class RegisterRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=64)
    email: str
    password: str = Field(..., min_length=6, max_length=128)
    grade: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v

    @field_validator("email")
    @classmethod
    def _check_email(cls, v: str) -> str:
        v = v.strip().lower()
        if not _EMAIL_RE.match(v):
            raise ValueError("invalid email address")
        return v


class LoginRequest(CamelModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class UserPublic(CamelModel):
    id: str
    name: str
    email: str
    grade: Optional[str] = None
    created_at: Optional[datetime] = None


# --- Upload Schemas ---

class UploadSignatureRequest(CamelModel):
    file_name: str = Field(..., min_length=1)


class UploadSignature(CamelModel):
    mode: Literal["direct"] = "direct"
    access_id: str
    policy: str
    signature: str
    dir: str
    host: str
    expire: int
    key: str


class ServerUploadHint(CamelModel):
    mode: Literal["server"] = "server"
    upload_url: str = "/api/upload"


class UploadResult(CamelModel):
    mode: Literal["oss", "inline"]
    url: str
    key: str


# --- Homework Schemas ---

class HomeworkCreate(CamelModel):
    title: str
    subject: Subject
    image_url: str
    image_path: str

    @field_validator("title", "image_path")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("image_url")
    @classmethod
    def _check_image_url(cls, v: str) -> str:
        v = v.strip()
        if not is_valid_image_url(v):
            raise ValueError("must be a valid http(s) URL or image data URL")
        return v


class QuestionBrief(CamelModel):
    id: str
    question_number: str
    is_correct: Optional[bool] = None


class QuestionPublic(CamelModel):
    id: str
    homework_id: str
    question_number: str
    question_type: str
    content: str
    options: Optional[List[str]] = None
    student_answer: Optional[str] = None
    is_correct: Optional[bool] = None
    correct_answer: Optional[str] = None
    explanation: Optional[str] = None
    steps: Optional[List[str]] = None
    knowledge_points: Optional[List[str]] = None
    error_type: Optional[str] = None
    encouragement: Optional[str] = None
    difficulty: Optional[int] = None


class HomeworkPublic(CamelModel):
    id: str
    title: str
    subject: str
    image_url: str
    image_path: str
    ocr_status: str
    correction_status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class HomeworkListItem(HomeworkPublic):
    questions: List[QuestionBrief] = []


class HomeworkDetail(HomeworkPublic):
    ocr_text: Optional[str] = None
    ocr_result: Optional[Dict[str, Any]] = None
    questions: List[QuestionPublic] = []


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int


class HomeworkListResponse(CamelModel):
    homeworks: List[HomeworkListItem]
    pagination: Pagination


class HomeworkCreateResponse(CamelModel):
    message: str
    homework: HomeworkPublic


# --- OCR / Correction Schemas ---

class OcrRequest(CamelModel):
    homework_id: str = Field(..., min_length=1)
    image_url: Optional[str] = None


class CorrectionRequest(CamelModel):
    homework_id: Optional[str] = None
    question_id: Optional[str] = None

    @model_validator(mode="after")
    def _require_target(self):
        if not self.homework_id and not self.question_id:
            raise ValueError("homeworkId or questionId is required")
        return self


class CorrectionOutcome(CamelModel):
    question_id: str
    is_correct: bool
    correct_answer: str
    explanation: str
    encouragement: str


class CorrectionResponse(CamelModel):
    message: str
    results: List[CorrectionOutcome] = []


# --- Model output Schemas (validated before persisting) ---

class OcrQuestion(CamelModel):
    question_number: str = ""
    question_type: str = "OTHER"
    content: str
    options: Optional[List[str]] = None
    student_answer: Optional[str] = None
    has_answer: bool = False

    @field_validator("question_number", "content", mode="before")
    @classmethod
    def _to_text(cls, v: Any) -> str:
        return _coerce_text(v).strip()

    @field_validator("question_type", mode="before")
    @classmethod
    def _normalize_type(cls, v: Any) -> str:
        s = _coerce_text(v).strip().upper()
        return s if s in get_args(QuestionType) else "OTHER"

    @field_validator("options", mode="before")
    @classmethod
    def _normalize_options(cls, v: Any) -> Optional[List[str]]:
        opts = _coerce_str_list(v) if isinstance(v, list) else None
        return opts or None

    @field_validator("student_answer", mode="before")
    @classmethod
    def _answer_text(cls, v: Any) -> Optional[str]:
        return None if v is None else _coerce_text(v)


class OcrResult(CamelModel):
    subject: Optional[str] = None
    total_questions: Optional[int] = None
    questions: List[OcrQuestion] = []

    @field_validator("subject", mode="before")
    @classmethod
    def _upper_subject(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v).strip().upper()

    @field_validator("total_questions", mode="before")
    @classmethod
    def _count(cls, v: Any) -> Optional[int]:
        try:
            return int(v)
        except (TypeError, ValueError):
            return None


class CorrectionVerdict(CamelModel):
    is_correct: bool
    correct_answer: str = ""
    explanation: str = ""
    steps: List[str] = []
    knowledge_points: List[str] = []
    error_type: Optional[str] = None
    difficulty: int = 3
    encouragement: str = ""

    @field_validator("correct_answer", "explanation", "encouragement", mode="before")
    @classmethod
    def _to_text(cls, v: Any) -> str:
        return _coerce_text(v)

    @field_validator("steps", "knowledge_points", mode="before")
    @classmethod
    def _to_list(cls, v: Any) -> List[str]:
        return _coerce_str_list(v)

    @field_validator("difficulty", mode="before")
    @classmethod
    def _clamp_difficulty(cls, v: Any) -> int:
        try:
            d = int(float(v))
        except (TypeError, ValueError):
            return 3
        return min(5, max(1, d))


class PracticeQuestion(CamelModel):
    question_number: str = ""
    question_type: str = ""
    content: str
    options: Optional[List[str]] = None
    answer: str
    explanation: str = ""
    score: int = 10
    knowledge_points: List[str] = []

    @field_validator("question_number", "question_type", "content", "answer", "explanation", mode="before")
    @classmethod
    def _to_text(cls, v: Any) -> str:
        return _coerce_text(v).strip()

    @field_validator("options", mode="before")
    @classmethod
    def _normalize_options(cls, v: Any) -> Optional[List[str]]:
        opts = _coerce_str_list(v) if isinstance(v, list) else None
        return opts or None

    @field_validator("score", mode="before")
    @classmethod
    def _default_score(cls, v: Any) -> int:
        try:
            s = int(float(v))
        except (TypeError, ValueError):
            return 10
        return s if s > 0 else 10

    @field_validator("knowledge_points", mode="before")
    @classmethod
    def _to_list(cls, v: Any) -> List[str]:
        return _coerce_str_list(v)


class PracticeSheet(CamelModel):
    title: Optional[str] = None
    subject: Optional[str] = None
    total_score: Optional[int] = None
    questions: List[PracticeQuestion] = Field(..., min_length=1)


class OcrResponse(CamelModel):
    message: str
    result: OcrResult


class KnowledgeExample(CamelModel):
    question: str = ""
    solution: str = ""


class KnowledgeSummary(CamelModel):
    knowledge_point: Optional[str] = None
    subject: Optional[str] = None
    grade: Optional[str] = None
    description: str
    common_mistakes: List[str] = []
    tips: str = ""
    examples: List[KnowledgeExample] = []

    @field_validator("description", "tips", mode="before")
    @classmethod
    def _to_text(cls, v: Any) -> str:
        return _coerce_text(v)

    @field_validator("common_mistakes", mode="before")
    @classmethod
    def _to_list(cls, v: Any) -> List[str]:
        return _coerce_str_list(v)


# --- Mistake / Knowledge Schemas ---

class MistakePublic(CamelModel):
    id: str
    question_id: str
    subject: str
    question_type: str
    content: str
    student_answer: str
    correct_answer: Optional[str] = None
    explanation: Optional[str] = None
    knowledge_points: Optional[List[str]] = None
    difficulty: Optional[int] = None
    mistake_count: int
    mastered: bool
    last_mistake_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class HomeworkBrief(CamelModel):
    id: str
    title: str
    image_url: str
    created_at: Optional[datetime] = None


class MistakeQuestion(QuestionPublic):
    homework: HomeworkBrief


class MistakeDetail(MistakePublic):
    question: Optional[MistakeQuestion] = None


class MistakeListResponse(CamelModel):
    mistakes: List[MistakePublic]
    pagination: Pagination


class MistakeUpdate(CamelModel):
    mastered: Optional[bool] = None


class KnowledgePointPublic(CamelModel):
    id: str
    name: str
    subject: str
    description: Optional[str] = None
    mistake_count: int
    updated_at: Optional[datetime] = None


class SubjectCount(CamelModel):
    subject: str
    count: int


class KnowledgeListResponse(CamelModel):
    knowledge_points: List[KnowledgePointPublic]
    subject_stats: List[SubjectCount]


class KnowledgeSummaryRequest(CamelModel):
    knowledge_point: str = Field(..., min_length=1)
    subject: Subject


# --- Practice Schemas ---

class PracticeGenerateRequest(CamelModel):
    mistake_id: Optional[str] = None
    knowledge_point: Optional[str] = None
    subject: Optional[Subject] = None
    practice_type: PracticeType = "SIMILAR"
    question_count: int = Field(5, ge=1, le=20)


class PracticeCreated(CamelModel):
    id: str
    title: str
    question_count: int


class PracticeGenerateResponse(CamelModel):
    message: str
    practice: PracticeCreated


class PracticeSummary(CamelModel):
    id: str
    title: str
    subject: str
    practice_type: str
    total_score: int
    user_score: Optional[int] = None
    status: str
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class PracticeListItem(PracticeSummary):
    question_count: int


class PracticeListResponse(CamelModel):
    practices: List[PracticeListItem]
    pagination: Pagination


class PracticeDetail(PracticeSummary):
    questions: List[Dict[str, Any]]


class PracticeSubmitRequest(CamelModel):
    # question index -> submitted answer
    answers: Dict[int, Optional[str]] = {}


class PracticeSubmitResponse(CamelModel):
    message: str
    score: int
    total_score: int
    results: List[Dict[str, Any]]


# --- Statistics Schemas ---

class StatisticsOverview(CamelModel):
    total_mistakes: int
    mastered_mistakes: int
    unmastered_mistakes: int
    mastery_rate: int
    total_homeworks: int
    total_practices: int


class TypeCount(CamelModel):
    type: str
    count: int


class TopKnowledgePoint(CamelModel):
    name: str
    subject: str
    mistake_count: int


class TrendPoint(CamelModel):
    date: str
    mistakes: int
    mastered: int


class PracticeScore(CamelModel):
    title: str
    score: int
    total_score: int
    percent: int
    date: Optional[str] = None


class StatisticsResponse(CamelModel):
    overview: StatisticsOverview
    subject_stats: List[SubjectCount]
    type_stats: List[TypeCount]
    top_knowledge_points: List[TopKnowledgePoint]
    trend_data: List[TrendPoint]
    practice_scores: List[PracticeScore]
