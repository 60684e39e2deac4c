"""
Main FastAPI Application
Entry point for the backend server
"""
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime
from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie

from app.config import settings
from app.core.errors import EchoBaseError, NoSpeechDetected, RecordingError, ResourceAccessError
from app.core.logging import configure_logging, get_logger
from app.models.user import User
from app.models.bot import Bot
from app.models.conversation import ConversationTurn

# Import routers
from app.api.routes import auth, bots, voice, speech

configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("startup", app=settings.APP_NAME, environment=settings.ENVIRONMENT)

    # Initialize MongoDB
    client = AsyncIOMotorClient(settings.MONGODB_URL)
    database = client[settings.MONGODB_DB_NAME]

    # Initialize Beanie with document models
    await init_beanie(
        database=database,
        document_models=[User, Bot, ConversationTurn]
    )

    logger.info("mongodb_connected", database=settings.MONGODB_DB_NAME)
    logger.info("server_ready", host=settings.HOST, port=settings.PORT)

    yield

    # Shutdown
    logger.info("shutdown")
    client.close()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Voice-chat bots: speak, get a spoken answer, replay the transcript",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-AI-Text"],
)


@app.exception_handler(EchoBaseError)
async def echobase_error_handler(request: Request, exc: EchoBaseError):
    if isinstance(exc, NoSpeechDetected):
        status_code = 422
    elif isinstance(exc, (ResourceAccessError, RecordingError)):
        status_code = 409
    else:
        status_code = 502
    logger.warning("request_failed", path=request.url.path, error=type(exc).__name__, detail=str(exc))
    return JSONResponse(status_code=status_code, content={"detail": exc.user_message})


# Include routers
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(bots.router, prefix="/api/bots", tags=["Bots"])
app.include_router(voice.router, prefix="/api/bots", tags=["Voice"])
app.include_router(speech.router, prefix="/api", tags=["Speech"])


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "EchoBase API",
        "version": settings.APP_VERSION,
        "docs": "/api/docs"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat()
    }


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
