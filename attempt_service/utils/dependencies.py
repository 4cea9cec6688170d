from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError
import jwt
import logging

from attempt_service.config import settings
from attempt_service.database import get_db
from attempt_service.models.schemas import UserResponse, UserRole
from attempt_service.services.attempt_repository import MemoryAttemptRepository, MongoAttemptRepository
from attempt_service.services.attempt_service import AttemptService
from attempt_service.services.quiz_store import MemoryQuizStore, MongoQuizStore

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

_memory_service = None


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)
) -> UserResponse:
    """Resolve the caller from the access token issued by the auth service"""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token is required",
            headers={"WWW-Authenticate": "Bearer"}
        )

    try:
        payload = jwt.decode(credentials.credentials, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = payload.get("user_id") or payload.get("sub")
        if not user_id:
            raise jwt.InvalidTokenError("token has no subject")
        return UserResponse(
            id=str(user_id),
            role=payload.get("role", UserRole.STUDENT),
            name=payload.get("name")
        )
    except (jwt.PyJWTError, ValidationError) as e:
        logger.debug(f"Rejected access token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"}
        )


def require_roles(*roles: UserRole):
    """Dependency factory restricting an endpoint to the given roles"""
    def checker(current_user: UserResponse = Depends(get_current_user)) -> UserResponse:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions"
            )
        return current_user
    return checker


def get_attempt_service() -> AttemptService:
    """Attempt service bound to MongoDB, or to process memory when it is unavailable"""
    global _memory_service
    db = get_db()
    if db is not None:
        return AttemptService(
            MongoAttemptRepository(db[settings.ATTEMPTS_COLLECTION]),
            MongoQuizStore(db[settings.QUIZZES_COLLECTION])
        )

    if _memory_service is None:
        quiz_store = MemoryQuizStore()
        if settings.QUIZ_FIXTURES_PATH:
            quiz_store.load_json(settings.QUIZ_FIXTURES_PATH)
        _memory_service = AttemptService(MemoryAttemptRepository(), quiz_store)
    return _memory_service
