from fastapi import APIRouter, Depends, Query, Request, Response, status
from typing import Optional

from attempt_service.config import settings
from attempt_service.exceptions import AccessDenied, AttemptNotFound
from attempt_service.models.attempt import (
    Attempt, AttemptStatus, CheatLogRequest, RequestMeta, StartAttemptRequest, SubmitAnswerRequest
)
from attempt_service.models.schemas import UserResponse, UserRole
from attempt_service.services.attempt_service import AttemptService
from attempt_service.utils.dependencies import get_attempt_service, get_current_user, require_roles

router = APIRouter(
    prefix="/attempts",
    tags=["attempts"],
    responses={404: {"description": "Quiz attempt not found"}}
)

staff_only = require_roles(UserRole.TEACHER, UserRole.ADMIN)


def _ensure_manages_quiz(service: AttemptService, quiz_id: str, user: UserResponse):
    """Admins manage every quiz, teachers only the ones they created"""
    if user.role == UserRole.ADMIN:
        return
    if user.role == UserRole.TEACHER and service.get_quiz_owner(quiz_id) == user.id:
        return
    raise AccessDenied()


# ========== STUDENT ==========
@router.post("/start", summary="Start or resume a quiz attempt")
def start_attempt(
    payload: StartAttemptRequest,
    request: Request,
    response: Response,
    current_user: UserResponse = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service)
):
    """
    Start a quiz attempt

    - Returns **201** with a new attempt, or **200** when an in-progress attempt is resumed
    - The quiz is returned without its answer key
    """
    meta = RequestMeta(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent")
    )
    result = service.start(payload.quiz_id, current_user.id, meta)

    response.status_code = status.HTTP_200_OK if result.resumed else status.HTTP_201_CREATED
    return {
        "message": "Resuming existing attempt" if result.resumed else "Quiz started successfully",
        "resumed": result.resumed,
        "attempt": result.attempt.public_dict(),
        "quiz": result.quiz
    }


@router.post("/{attempt_id}/answer", summary="Submit an answer")
def submit_answer(
    attempt_id: str,
    payload: SubmitAnswerRequest,
    current_user: UserResponse = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service)
):
    result = service.submit_answer(
        attempt_id, current_user.id, payload.question_id, payload.answer, payload.time_spent
    )
    return {"message": "Answer submitted successfully", **result.model_dump()}


@router.post("/{attempt_id}/complete", summary="Complete a quiz attempt")
def complete_attempt(
    attempt_id: str,
    current_user: UserResponse = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service)
):
    """Score, close and return what the quiz's visibility settings allow"""
    result = service.complete(attempt_id, current_user.id)
    return {"message": "Quiz completed successfully", **result.model_dump(mode="json", exclude_none=True)}


@router.post("/{attempt_id}/cheat-log", summary="Record a cheating event")
def record_cheat_event(
    attempt_id: str,
    payload: Optional[CheatLogRequest] = None,
    current_user: UserResponse = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service)
):
    """Allowed for the attempt owner, the teacher who owns the quiz, and admins"""
    attempt = service.get_attempt(attempt_id)
    if attempt.student_id != current_user.id:
        if current_user.role == UserRole.STUDENT:
            raise AttemptNotFound()
        _ensure_manages_quiz(service, attempt.quiz_id, current_user)

    service.record_cheat_event(attempt_id, current_user.id, payload.message if payload else None)
    return {"message": "Cheating log recorded"}


@router.get("/my-attempts", summary="List my attempts")
def get_my_attempts(
    quiz_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    current_user: UserResponse = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service)
):
    filters = {"student_id": current_user.id}
    if quiz_id:
        filters["quiz_id"] = quiz_id
    return service.list_attempts(filters, page, limit).model_dump()


@router.get("/best", summary="My best completed attempt on a quiz")
def get_my_best_attempt(
    quiz_id: str = Query(...),
    current_user: UserResponse = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service)
):
    attempt = service.best_attempt(quiz_id, current_user.id)
    return {"attempt": service.own_attempt_details(attempt.id, current_user.id)}


@router.get("/{attempt_id}/my-details", summary="Details of one of my attempts")
def get_my_attempt_details(
    attempt_id: str,
    current_user: UserResponse = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service)
):
    return {"attempt": service.own_attempt_details(attempt_id, current_user.id)}


# ========== TEACHER / ADMIN ==========
@router.get("/quiz/{quiz_id}", summary="Attempts on a quiz")
def get_quiz_attempts(
    quiz_id: str,
    status_filter: Optional[AttemptStatus] = Query(None, alias="status"),
    student_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    current_user: UserResponse = Depends(staff_only),
    service: AttemptService = Depends(get_attempt_service)
):
    _ensure_manages_quiz(service, quiz_id, current_user)

    filters = {"quiz_id": quiz_id}
    if status_filter:
        filters["status"] = status_filter.value
    if student_id:
        filters["student_id"] = student_id
    return service.list_attempts(filters, page, limit).model_dump()


@router.get("/student/{student_id}", summary="Attempts of a student")
def get_student_attempts(
    student_id: str,
    status_filter: Optional[AttemptStatus] = Query(None, alias="status"),
    quiz_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    current_user: UserResponse = Depends(staff_only),
    service: AttemptService = Depends(get_attempt_service)
):
    filters = {"student_id": student_id}
    if status_filter:
        filters["status"] = status_filter.value
    if quiz_id:
        filters["quiz_id"] = quiz_id
    return service.list_attempts(filters, page, limit).model_dump()


@router.get("/{attempt_id}/details", summary="Full attempt details")
def get_attempt_details(
    attempt_id: str,
    current_user: UserResponse = Depends(staff_only),
    service: AttemptService = Depends(get_attempt_service)
):
    attempt: Attempt = service.get_attempt(attempt_id)
    _ensure_manages_quiz(service, attempt.quiz_id, current_user)
    return {"attempt": attempt.public_dict()}
