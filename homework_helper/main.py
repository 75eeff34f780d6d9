import logging
from typing import Literal, Optional, Union

from fastapi import Depends, FastAPI, File, Query, Request, Response, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from . import ai_service, auth, config, correction, crud, database, models, ocr, practice, schemas, stats, storage
from .errors import (
    AppError,
    AuthError,
    ConflictError,
    NoMaterialError,
    NotFoundError,
    UpstreamConfigError,
    ValidationError,
)

config.setup_logging()
logger = logging.getLogger(__name__)

# Initialize DB
models.Base.metadata.create_all(bind=database.engine)

app = FastAPI(title="Homework Helper")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

get_db = database.get_db
CurrentUser = Depends(auth.get_current_user)


@app.exception_handler(AppError)
def handle_app_error(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
def handle_request_validation(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = [str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path")]
    field = ".".join(loc)
    msg = first.get("msg", "Invalid request")
    body = {"detail": f"{field}: {msg}" if field else msg}
    if field:
        body["field"] = field
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body)


def _require_llm() -> None:
    if not config.is_llm_configured():
        raise UpstreamConfigError("AI service is not configured")


@app.get("/health")
def health():
    return {"status": "ok"}

# ==========================================
# AUTH
# ==========================================

@app.post("/api/auth/register", response_model=schemas.UserPublic, status_code=status.HTTP_201_CREATED)
def register(request: schemas.RegisterRequest, db: Session = Depends(get_db)):
    if db.query(models.User).filter(models.User.email == request.email).first():
        raise ConflictError("Email is already registered")

    user = models.User(
        name=request.name,
        email=request.email,
        password_hash=auth.hash_password(request.password),
        grade=(request.grade or "").strip() or None,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Email is already registered")
    db.refresh(user)
    logger.info(f"Registered user {user.id}")
    return schemas.UserPublic.model_validate(user)


@app.post("/api/auth/login", response_model=schemas.UserPublic)
def login(request: schemas.LoginRequest, response: Response, db: Session = Depends(get_db)):
    user = db.query(models.User).filter(models.User.email == request.email).first()
    if not user or not auth.verify_password(request.password, user.password_hash):
        raise AuthError("Invalid email or password")

    response.set_cookie(
        key=config.session_cookie_name(),
        value=auth.mint_session_token(user.id),
        max_age=config.session_ttl_sec(),
        httponly=True,
        samesite="lax",
    )
    return schemas.UserPublic.model_validate(user)


@app.post("/api/auth/logout")
def logout(response: Response):
    response.delete_cookie(config.session_cookie_name())
    return {"message": "Logged out"}


@app.get("/api/auth/me", response_model=schemas.UserPublic)
def me(user: models.User = CurrentUser):
    return schemas.UserPublic.model_validate(user)

# ==========================================
# UPLOAD
# ==========================================

@app.post("/api/upload/signature", response_model=Union[schemas.UploadSignature, schemas.ServerUploadHint])
def upload_signature(request: schemas.UploadSignatureRequest, user: models.User = CurrentUser):
    """Direct-upload credentials, or a pointer to the server-side upload when OSS is absent."""
    storage.validate_image_name(request.file_name)
    if not config.is_oss_configured():
        return schemas.ServerUploadHint()
    return schemas.UploadSignature(**storage.generate_upload_signature(request.file_name, user.id))


@app.post("/api/upload", response_model=schemas.UploadResult)
def upload_file(file: UploadFile = File(...), user: models.User = CurrentUser):
    # Read one byte past the cap so oversize payloads are detected without buffering them whole.
    data = file.file.read(storage.MAX_UPLOAD_BYTES + 1)
    stored = storage.store_upload(user.id, file.filename or "", file.content_type, data)
    return schemas.UploadResult(**stored)

# ==========================================
# HOMEWORK
# ==========================================

@app.post("/api/homework", response_model=schemas.HomeworkCreateResponse, status_code=status.HTTP_201_CREATED)
def create_homework(request: schemas.HomeworkCreate, db: Session = Depends(get_db), user: models.User = CurrentUser):
    homework = models.Homework(
        user_id=user.id,
        title=request.title,
        subject=request.subject,
        image_url=request.image_url,
        image_path=request.image_path,
        ocr_status="PENDING",
        correction_status="PENDING",
    )
    db.add(homework)
    db.commit()
    db.refresh(homework)
    return schemas.HomeworkCreateResponse(
        message="Homework created",
        homework=schemas.HomeworkPublic.model_validate(homework),
    )


@app.get("/api/homework", response_model=schemas.HomeworkListResponse)
def list_homework(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    subject: Optional[schemas.Subject] = None,
    db: Session = Depends(get_db),
    user: models.User = CurrentUser,
):
    query = (
        db.query(models.Homework)
        .options(selectinload(models.Homework.questions))
        .filter(models.Homework.user_id == user.id)
    )
    if subject:
        query = query.filter(models.Homework.subject == subject)
    items, pagination = crud.paginate(query.order_by(models.Homework.created_at.desc()), page, limit)
    return schemas.HomeworkListResponse(
        homeworks=[schemas.HomeworkListItem.model_validate(h) for h in items],
        pagination=schemas.Pagination(**pagination),
    )


@app.get("/api/homework/{homework_id}", response_model=schemas.HomeworkDetail)
def get_homework(homework_id: str, db: Session = Depends(get_db), user: models.User = CurrentUser):
    homework = db.query(models.Homework).filter(models.Homework.id == homework_id).first()
    if not homework or homework.user_id != user.id:
        raise NotFoundError("Homework not found")
    return schemas.HomeworkDetail.model_validate(homework)

# ==========================================
# OCR
# ==========================================

def _ocr_image_url(requested: Optional[str], homework: models.Homework, user_id: str) -> str:
    """The stored image, an inline data URL, or an object in the caller's own upload root."""
    image_url = (requested or "").strip()
    if not image_url or image_url == homework.image_url:
        image_url = homework.image_url
    elif not (image_url.startswith("data:") or storage.is_user_object_url(image_url, user_id)):
        raise ValidationError("imageUrl: must be this homework's image or one of your uploads", field="imageUrl")

    if not schemas.is_valid_image_url(image_url):
        raise ValidationError("imageUrl: must be a valid http(s) URL or image data URL", field="imageUrl")
    return image_url


@app.post("/api/ocr", response_model=schemas.OcrResponse)
def run_ocr(request: schemas.OcrRequest, db: Session = Depends(get_db), user: models.User = CurrentUser):
    homework = db.query(models.Homework).filter(models.Homework.id == request.homework_id).first()
    if not homework or homework.user_id != user.id:
        raise NotFoundError("Homework not found")
    _require_llm()

    image_url = _ocr_image_url(request.image_url, homework, user.id)
    result = ocr.run_homework_ocr(db, homework, image_url)
    return schemas.OcrResponse(message="OCR completed", result=result)

# ==========================================
# CORRECTION
# ==========================================

@app.post("/api/correction", response_model=schemas.CorrectionResponse)
def run_correction(request: schemas.CorrectionRequest, db: Session = Depends(get_db), user: models.User = CurrentUser):
    _require_llm()

    results = correction.run_correction(db, user.id, request.homework_id, request.question_id)
    if not results and not request.question_id:
        message = "No questions need grading"
    else:
        message = f"Graded {len(results)} questions"
    return schemas.CorrectionResponse(
        message=message,
        results=[schemas.CorrectionOutcome(**r) for r in results],
    )

# ==========================================
# MISTAKES
# ==========================================

def _owned_mistake(db: Session, mistake_id: str, user_id: str) -> models.Mistake:
    mistake = db.query(models.Mistake).filter(models.Mistake.id == mistake_id).first()
    if not mistake or mistake.user_id != user_id:
        raise NotFoundError("Mistake not found")
    return mistake


@app.get("/api/mistakes", response_model=schemas.MistakeListResponse)
def list_mistakes(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    subject: Optional[schemas.Subject] = None,
    mastered: Optional[bool] = None,
    knowledge_point: Optional[str] = Query(None, alias="knowledgePoint"),
    db: Session = Depends(get_db),
    user: models.User = CurrentUser,
):
    M = models.Mistake
    query = db.query(M).filter(M.user_id == user.id)
    if subject:
        query = query.filter(M.subject == subject)
    if mastered is not None:
        query = query.filter(M.mastered.is_(mastered))
    if knowledge_point:
        query = query.filter(crud.json_list_contains(M.knowledge_points, knowledge_point))

    query = query.order_by(M.mastered.asc(), M.mistake_count.desc(), M.last_mistake_at.desc())
    items, pagination = crud.paginate(query, page, limit)
    return schemas.MistakeListResponse(
        mistakes=[schemas.MistakePublic.model_validate(m) for m in items],
        pagination=schemas.Pagination(**pagination),
    )


@app.get("/api/mistakes/{mistake_id}", response_model=schemas.MistakeDetail)
def get_mistake(mistake_id: str, db: Session = Depends(get_db), user: models.User = CurrentUser):
    return schemas.MistakeDetail.model_validate(_owned_mistake(db, mistake_id, user.id))


@app.patch("/api/mistakes/{mistake_id}", response_model=schemas.MistakePublic)
def update_mistake(
    mistake_id: str,
    request: schemas.MistakeUpdate,
    db: Session = Depends(get_db),
    user: models.User = CurrentUser,
):
    mistake = _owned_mistake(db, mistake_id, user.id)
    if request.mastered is not None:
        mistake.mastered = request.mastered
    db.commit()
    db.refresh(mistake)
    return schemas.MistakePublic.model_validate(mistake)


@app.delete("/api/mistakes/{mistake_id}")
def delete_mistake(mistake_id: str, db: Session = Depends(get_db), user: models.User = CurrentUser):
    mistake = _owned_mistake(db, mistake_id, user.id)
    db.delete(mistake)
    db.commit()
    return {"message": "Deleted"}

# ==========================================
# KNOWLEDGE POINTS
# ==========================================

@app.get("/api/knowledge", response_model=schemas.KnowledgeListResponse)
def list_knowledge_points(
    subject: Optional[schemas.Subject] = None,
    q: Optional[str] = None,
    sort_by: Literal["mistakeCount", "updatedAt"] = Query("mistakeCount", alias="sortBy"),
    db: Session = Depends(get_db),
    user: models.User = CurrentUser,
):
    KP = models.KnowledgePoint
    query = db.query(KP)
    if subject:
        query = query.filter(KP.subject == subject)
    if q and q.strip():
        query = query.filter(KP.name.contains(q.strip(), autoescape=True))
    order = KP.mistake_count.desc() if sort_by == "mistakeCount" else KP.updated_at.desc()
    points = query.order_by(order, KP.name).limit(50).all()

    M = models.Mistake
    subject_rows = (
        db.query(M.subject, func.count(M.id))
        .filter(M.user_id == user.id, M.mastered.is_(False))
        .group_by(M.subject)
        .all()
    )
    return schemas.KnowledgeListResponse(
        knowledge_points=[schemas.KnowledgePointPublic.model_validate(kp) for kp in points],
        subject_stats=[schemas.SubjectCount(subject=s, count=c) for s, c in subject_rows],
    )


@app.post("/api/knowledge/summary", response_model=schemas.KnowledgeSummary)
def summarize_knowledge_point(
    request: schemas.KnowledgeSummaryRequest,
    db: Session = Depends(get_db),
    user: models.User = CurrentUser,
):
    _require_llm()

    M = models.Mistake
    mistakes = (
        db.query(M)
        .filter(
            M.user_id == user.id,
            M.subject == request.subject,
            crud.json_list_contains(M.knowledge_points, request.knowledge_point),
        )
        .order_by(M.mistake_count.desc(), M.last_mistake_at.desc())
        .limit(5)
        .all()
    )
    if not mistakes:
        raise NoMaterialError("No mistakes recorded for this knowledge point")

    summary = ai_service.summarize_knowledge_point(request.knowledge_point, request.subject, mistakes)

    KP = models.KnowledgePoint
    point = db.query(KP).filter(KP.name == request.knowledge_point, KP.subject == request.subject).first()
    if point and summary.description.strip():
        point.description = summary.description
        db.commit()
    return summary

# ==========================================
# PRACTICE
# ==========================================

def _owned_practice(db: Session, practice_id: str, user_id: str) -> models.Practice:
    found = db.query(models.Practice).filter(models.Practice.id == practice_id).first()
    if not found or found.user_id != user_id:
        raise NotFoundError("Practice not found")
    return found


@app.post("/api/practice/generate", response_model=schemas.PracticeGenerateResponse)
def generate_practice(
    request: schemas.PracticeGenerateRequest,
    db: Session = Depends(get_db),
    user: models.User = CurrentUser,
):
    _require_llm()

    created = practice.generate_practice(db, user.id, request)
    return schemas.PracticeGenerateResponse(
        message="Practice sheet generated",
        practice=schemas.PracticeCreated(id=created.id, title=created.title, question_count=len(created.questions)),
    )


@app.get("/api/practice", response_model=schemas.PracticeListResponse)
def list_practices(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status_filter: Optional[schemas.PracticeStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    user: models.User = CurrentUser,
):
    P = models.Practice
    query = db.query(P).filter(P.user_id == user.id)
    if status_filter:
        query = query.filter(P.status == status_filter)
    items, pagination = crud.paginate(query.order_by(P.created_at.desc()), page, limit)
    return schemas.PracticeListResponse(
        practices=[
            schemas.PracticeListItem(
                **schemas.PracticeSummary.model_validate(p).model_dump(),
                question_count=len(p.questions or []),
            )
            for p in items
        ],
        pagination=schemas.Pagination(**pagination),
    )


@app.get("/api/practice/{practice_id}", response_model=schemas.PracticeDetail)
def get_practice(practice_id: str, db: Session = Depends(get_db), user: models.User = CurrentUser):
    return schemas.PracticeDetail.model_validate(_owned_practice(db, practice_id, user.id))


@app.post("/api/practice/{practice_id}/submit", response_model=schemas.PracticeSubmitResponse)
def submit_practice(
    practice_id: str,
    request: schemas.PracticeSubmitRequest,
    db: Session = Depends(get_db),
    user: models.User = CurrentUser,
):
    sheet = _owned_practice(db, practice_id, user.id)
    results, score = practice.submit_practice(db, sheet, request.answers)
    return schemas.PracticeSubmitResponse(
        message="Submitted",
        score=score,
        total_score=sheet.total_score,
        results=results,
    )

# ==========================================
# STATISTICS
# ==========================================

@app.get("/api/statistics", response_model=schemas.StatisticsResponse)
def get_statistics(db: Session = Depends(get_db), user: models.User = CurrentUser):
    return schemas.StatisticsResponse.model_validate(stats.compute_statistics(db, user.id))
