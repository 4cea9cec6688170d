from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from pymongo.errors import PyMongoError
import logging

from attempt_service.config import settings
from attempt_service.database import close_db, get_client, init_db
from attempt_service.exceptions import AttemptError
from attempt_service.routers import attempts_router
from attempt_service.utils.dependencies import get_attempt_service

# Setup logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Starting {settings.APP_NAME}...")
    if not init_db():
        if not settings.QUIZ_FIXTURES_PATH:
            logger.error("❌ MongoDB is unavailable and QUIZ_FIXTURES_PATH is not set, no quizzes to serve")
            raise RuntimeError("MongoDB unavailable and no quiz fixtures configured")
        logger.warning("Attempts are kept in memory and will be lost on restart")
        # seeds the memory quiz store
        get_attempt_service()

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}...")
    close_db()


# Create FastAPI app
app = FastAPI(
    title=f"{settings.APP_NAME} - Quiz Platform",
    description="Timed quiz attempts: start, resume, answer, complete",
    version=settings.VERSION,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AttemptError)
async def attempt_error_handler(request: Request, exc: AttemptError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "code": exc.code, "detail": exc.message}
    )


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error(f"❌ MongoDB error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"success": False, "code": "DATABASE_UNAVAILABLE", "detail": "Database unavailable"}
    )


# Include routers
app.include_router(attempts_router)


# Health check endpoint
@app.get("/health")
def health_check():
    client = get_client()
    storage = "memory"
    if client is not None:
        try:
            client.admin.command('ping')
            storage = "mongodb"
        except PyMongoError:
            storage = "disconnected"

    return {
        "status": "healthy",
        "service": "attempt-service",
        "version": settings.VERSION,
        "storage": storage
    }


@app.get("/")
def root():
    return {
        "message": f"{settings.APP_NAME} - Quiz Platform",
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "attempt_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )
