from fastapi import FastAPI, Depends, Header, Request, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import OperationalError, InterfaceError, TimeoutError as PoolTimeoutError
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Dict, List, Optional
from datetime import datetime
import structlog

from core.config import settings
from core.exceptions import QuizServiceError, TransientStoreError, ValidationError
from core.security import Identity, verify_token
from db.session import get_db
from services.attempt_service import AttemptService, Eligibility
from services.quiz_service import QuizService
from services.stats_service import StatsService
from services.user_service import UserService

logger = structlog.get_logger()

# API Documentation
API_DESCRIPTION = """
## Security Awareness Quiz API

Quiz taking, attempt tracking and leaderboards for security-awareness training.

### Authentication

Endpoints that act on behalf of a user require a signed token:

- Header: `X-Auth-Token: <token>`
- Or: `Authorization: Bearer <token>`

### Attempts

Each user may attempt a quiz at most twice. A passing attempt (half the
questions, rounded up) ends the quiz for that user.
"""

TAGS_METADATA = [
    {
        "name": "quizzes",
        "description": "Public quiz discovery and quiz content for taking.",
    },
    {
        "name": "attempts",
        "description": "Eligibility, attempt submission and completion.",
    },
    {
        "name": "stats",
        "description": "Leaderboard and dashboards.",
    },
    {
        "name": "admin",
        "description": "Quiz management. Requires the ADMIN role.",
    },
]

app = FastAPI(
    title="Security Awareness Quiz API",
    description=API_DESCRIPTION,
    version="1.0.0",
    openapi_tags=TAGS_METADATA,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# === Error handling ===

def _error_response(request: Request, exc: QuizServiceError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "Request failed",
        error=type(exc).__name__,
        detail=exc.message,
        method=request.method,
        path=request.url.path,
        **exc.context,
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(QuizServiceError)
async def handle_service_error(request: Request, exc: QuizServiceError):
    return _error_response(request, exc)


@app.exception_handler(OperationalError)
@app.exception_handler(InterfaceError)
@app.exception_handler(PoolTimeoutError)
async def handle_store_unavailable(request: Request, exc: Exception):
    logger.error("Store unavailable", error=str(exc), path=request.url.path)
    return _error_response(request, TransientStoreError())


@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception):
    logger.error("Unhandled error", method=request.method, path=request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "An unexpected error occurred"})


# === Pydantic Models with Documentation ===

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class AttemptOut(CamelModel):
    """One recorded quiz attempt."""
    id: int
    quiz_id: int
    score: int = Field(..., description="Questions answered correctly")
    total_questions: int
    completed: bool = Field(..., description="True when the attempt passed")
    attempt_number: int = Field(..., description="1-based attempt ordinal")
    created_at: Optional[datetime] = None


class EligibilityOut(CamelModel):
    latest_attempt: Optional[AttemptOut] = None
    attempts_left: int
    can_retake: bool


class AttemptSubmission(CamelModel):
    """
    Completed attempt. Send `answers` (question id -> selected answer ids) to
    have the server grade it. Pre-computed `score`/`totalQuestions`/`passed`
    are only accepted when the deployment trusts client scores.
    """
    answers: Optional[Dict[int, List[int]]] = None
    score: Optional[int] = None
    total_questions: Optional[int] = None
    passed: Optional[bool] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"answers": {"12": [40], "13": [44, 45]}}
        }
    )


class AttemptResult(CamelModel):
    message: str = "Quiz completion recorded"
    attempt: AttemptOut
    attempts_left: int
    can_retake: bool


class QuizListItem(CamelModel):
    id: int
    title: str
    job_role: Optional[str] = None


class AnswerOption(CamelModel):
    id: int
    text: str


class QuestionForTaking(CamelModel):
    id: int
    title: str
    multiple: bool = Field(..., description="More than one answer must be selected")
    answers: List[AnswerOption]


class QuizForTaking(CamelModel):
    """Quiz content for the taking UI. Never carries correctness flags."""
    id: int
    title: str
    job_role: Optional[str] = None
    questions: List[QuestionForTaking]


class ReviewAnswer(CamelModel):
    id: int
    text: str
    is_correct: bool


class ReviewQuestion(CamelModel):
    id: int
    title: str
    answers: List[ReviewAnswer]


class QuizReview(CamelModel):
    id: int
    title: str
    questions: List[ReviewQuestion]


class LeaderboardEntry(CamelModel):
    rank: int
    user_id: int
    username: Optional[str] = None
    email: Optional[str] = None
    photo: Optional[str] = None
    points: int


class QuizSummary(CamelModel):
    id: int
    title: str
    total_questions: int


class UserQuizEntry(QuizSummary):
    user_score: int
    attempt_number: int
    completed: bool


class UserDashboard(CamelModel):
    total_quizzes: int
    done_quizzes: int
    total_points: int
    user_quizzes: List[UserQuizEntry]
    recent_quizzes: List[QuizSummary]
    leaderboard: List[LeaderboardEntry]


class RecentUser(CamelModel):
    id: int
    username: Optional[str] = None
    email: Optional[str] = None
    photo: Optional[str] = None
    role: str


class AdminDashboard(CamelModel):
    total_users: int
    total_quizzes: int
    recent_users: List[RecentUser]
    leaderboard: List[LeaderboardEntry]


class RoleOut(BaseModel):
    role: str


class AnswerIn(CamelModel):
    text: str = Field(..., max_length=1000)
    is_correct: bool = False


class QuestionIn(CamelModel):
    title: str = Field(..., max_length=1000)
    answers: List[AnswerIn]


class QuizIn(CamelModel):
    """Request body for creating or replacing a quiz."""
    title: str = Field(..., max_length=255, examples=["Phishing Basics"])
    job_role: Optional[str] = Field(None, max_length=255)
    questions: List[QuestionIn] = Field(default_factory=list)


class VisibilityIn(BaseModel):
    visibility: str = Field(..., pattern="^(PUBLIC|PRIVATE)$")


class AdminQuiz(CamelModel):
    id: int
    title: str
    job_role: Optional[str] = None
    visibility: str
    questions_count: int
    created_at: Optional[datetime] = None


class MessageResponse(BaseModel):
    message: str


def get_identity(
    x_auth_token: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
) -> Optional[Identity]:
    """
    Resolve the caller from the request headers. Returns None when no valid
    token is present; services reject a missing identity with Unauthorized.
    """
    if authorization and authorization.lower().startswith("bearer "):
        identity = verify_token(authorization.split(" ", 1)[1].strip())
        if identity:
            return identity

    if x_auth_token:
        return verify_token(x_auth_token)

    return None


def _attempt_result(record) -> AttemptResult:
    eligibility = Eligibility(latest_attempt=record.attempt, attempts_left=record.attempts_left)
    return AttemptResult(
        attempt=AttemptOut.model_validate(record.attempt),
        attempts_left=record.attempts_left,
        can_retake=eligibility.can_retake,
    )


def _admin_quiz(quiz) -> AdminQuiz:
    return AdminQuiz(
        id=quiz.id,
        title=quiz.title,
        job_role=quiz.job_role,
        visibility=quiz.visibility,
        questions_count=len(quiz.questions),
        created_at=quiz.created_at,
    )


# === Quizzes ===

@app.get(
    "/api/quizzes",
    response_model=List[QuizListItem],
    tags=["quizzes"],
    summary="List public quizzes",
    description="Public quizzes, optionally filtered by a case-insensitive search over title and job role.",
)
async def list_quizzes(search: Optional[str] = Query(None, max_length=100), db: AsyncSession = Depends(get_db)):
    quizzes = await QuizService(db).list_public_quizzes(search)
    return [QuizListItem.model_validate(q) for q in quizzes]


@app.get(
    "/api/quizzes/{quiz_id}",
    response_model=QuizForTaking,
    tags=["quizzes"],
    summary="Get quiz for taking",
    responses={404: {"description": "Quiz not found"}},
)
async def get_quiz(quiz_id: int, db: AsyncSession = Depends(get_db)):
    return await QuizService(db).get_quiz_for_taking(quiz_id)


@app.get(
    "/api/quizzes/{quiz_id}/review",
    response_model=QuizReview,
    tags=["quizzes"],
    summary="Review correct answers",
    description="Correct answers are revealed only after the caller has submitted an attempt.",
    responses={401: {"description": "Authentication required"}, 403: {"description": "No attempt yet"}},
)
async def review_quiz(
    quiz_id: int,
    identity: Optional[Identity] = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    quiz = await QuizService(db).get_quiz_review(identity, quiz_id)
    return QuizReview.model_validate(quiz)


# === Attempts ===

@app.get(
    "/api/quizzes/{quiz_id}/attempt",
    response_model=EligibilityOut,
    tags=["attempts"],
    summary="Get attempt eligibility",
    responses={401: {"description": "Authentication required"}, 404: {"description": "User or quiz not found"}},
)
async def get_eligibility(
    quiz_id: int,
    identity: Optional[Identity] = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    eligibility = await AttemptService(db).get_eligibility(identity, quiz_id)
    return EligibilityOut(
        latest_attempt=AttemptOut.model_validate(eligibility.latest_attempt) if eligibility.latest_attempt else None,
        attempts_left=eligibility.attempts_left,
        can_retake=eligibility.can_retake,
    )


@app.post(
    "/api/quizzes/{quiz_id}/attempt",
    response_model=AttemptResult,
    tags=["attempts"],
    summary="Submit a completed attempt",
    responses={
        401: {"description": "Authentication required"},
        404: {"description": "User or quiz not found"},
        409: {"description": "Maximum attempts reached or quiz already passed"},
        422: {"description": "Malformed submission"},
    },
)
async def submit_attempt(
    quiz_id: int,
    submission: AttemptSubmission,
    identity: Optional[Identity] = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    service = AttemptService(db)
    if submission.answers is not None:
        record = await service.submit_answers(identity, quiz_id, submission.answers)
    elif settings.TRUST_CLIENT_SCORES:
        if submission.score is None or submission.total_questions is None or submission.passed is None:
            raise ValidationError("score, totalQuestions and passed are required", quiz_id=quiz_id)
        record = await service.submit_attempt(
            identity, quiz_id, submission.score, submission.total_questions, submission.passed
        )
    else:
        raise ValidationError("Answer selections are required", quiz_id=quiz_id)
    return _attempt_result(record)


@app.post(
    "/api/quizzes/{quiz_id}/mark-as-done",
    response_model=MessageResponse,
    tags=["attempts"],
    summary="Confirm a passed quiz",
    responses={400: {"description": "Latest attempt did not pass"}},
)
async def mark_as_done(
    quiz_id: int,
    identity: Optional[Identity] = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    await AttemptService(db).mark_attempt_done(identity, quiz_id)
    return {"message": "Quiz marked as done"}


# === Stats ===

@app.get(
    "/api/leaderboard",
    response_model=List[LeaderboardEntry],
    tags=["stats"],
    summary="Leaderboard",
    description="Users ranked by summed attempt score, recomputed on every call.",
)
async def get_leaderboard(
    limit: int = Query(settings.LEADERBOARD_LIMIT, ge=1, le=100),
    completed_only: bool = Query(False, alias="completedOnly"),
    identity: Optional[Identity] = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    await UserService(db).get_user(identity)
    return await StatsService(db).get_leaderboard(limit=limit, completed_only=completed_only)


@app.get("/api/user/dashboard", response_model=UserDashboard, tags=["stats"], summary="User dashboard")
async def user_dashboard(identity: Optional[Identity] = Depends(get_identity), db: AsyncSession = Depends(get_db)):
    return await StatsService(db).get_user_summary(identity)


@app.get("/api/user/role", response_model=RoleOut, tags=["stats"], summary="Caller's role")
async def user_role(identity: Optional[Identity] = Depends(get_identity), db: AsyncSession = Depends(get_db)):
    return {"role": await UserService(db).get_role(identity)}


# === Admin ===

@app.get("/api/admin/dashboard", response_model=AdminDashboard, tags=["admin"], summary="Admin dashboard")
async def admin_dashboard(identity: Optional[Identity] = Depends(get_identity), db: AsyncSession = Depends(get_db)):
    return await StatsService(db).get_admin_summary(identity)


@app.get("/api/admin/quizzes", response_model=List[AdminQuiz], tags=["admin"], summary="List all quizzes")
async def admin_list_quizzes(identity: Optional[Identity] = Depends(get_identity), db: AsyncSession = Depends(get_db)):
    quizzes = await QuizService(db).list_all_quizzes(identity)
    return [_admin_quiz(q) for q in quizzes]


@app.post("/api/admin/quizzes", response_model=AdminQuiz, status_code=201, tags=["admin"], summary="Create quiz")
async def admin_create_quiz(
    body: QuizIn,
    identity: Optional[Identity] = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    questions = [q.model_dump() for q in body.questions]
    quiz = await QuizService(db).create_quiz(identity, body.title, body.job_role, questions)
    return _admin_quiz(quiz)


@app.put("/api/admin/quizzes/{quiz_id}", response_model=AdminQuiz, tags=["admin"], summary="Replace quiz content")
async def admin_update_quiz(
    quiz_id: int,
    body: QuizIn,
    identity: Optional[Identity] = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    questions = [q.model_dump() for q in body.questions]
    quiz = await QuizService(db).update_quiz(identity, quiz_id, body.title, body.job_role, questions)
    return _admin_quiz(quiz)


@app.put(
    "/api/admin/quizzes/{quiz_id}/visibility",
    response_model=AdminQuiz,
    tags=["admin"],
    summary="Publish or hide a quiz",
)
async def admin_set_visibility(
    quiz_id: int,
    body: VisibilityIn,
    identity: Optional[Identity] = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    quiz = await QuizService(db).set_visibility(identity, quiz_id, body.visibility)
    return _admin_quiz(quiz)


@app.delete(
    "/api/admin/quizzes/{quiz_id}",
    response_model=MessageResponse,
    tags=["admin"],
    summary="Delete quiz",
    description="Deletes the quiz with its questions, answers and every recorded attempt.",
)
async def admin_delete_quiz(
    quiz_id: int,
    identity: Optional[Identity] = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    await QuizService(db).delete_quiz(identity, quiz_id)
    return {"message": "Quiz and related data deleted successfully"}
