import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from timechat.config import settings
from timechat.core.exceptions import AuthenticationError, ChatServiceError, UpstreamFailureError
from timechat.core.security import decode_access_token
from .init_db import get_db
from .models.user import User
from .services.user_service import get_user_by_id
from .tasks.cleanup import start_cleanup_loop

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    cleanup_task = None
    if settings.cleanup_enabled:
        cleanup_task = start_cleanup_loop()
    else:
        logger.info("Cleanup loop disabled by configuration")

    yield

    # Shutdown
    if cleanup_task is not None:
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass


app = FastAPI(title="TimeChat API", lifespan=lifespan)
security = HTTPBearer(auto_error=False)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_response(error: ChatServiceError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(error, AuthenticationError) else None
    return JSONResponse(
        status_code=error.status_code,
        content={"detail": error.message, "code": error.code},
        headers=headers,
    )


@app.exception_handler(ChatServiceError)
async def chat_service_error_handler(request: Request, exc: ChatServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    return error_response(exc)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"Database error on {request.method} {request.url.path}")
    return error_response(UpstreamFailureError("Storage is unavailable, try again later"))


async def user_from_token(db: AsyncSession, token: Optional[str]) -> User:
    """Resolve a bearer token to its user; AuthenticationError when that is impossible."""
    if not token:
        raise AuthenticationError("Not authorized, no token")
    user_id = decode_access_token(token)
    user = await get_user_by_id(db, user_id)
    if user is None:
        raise AuthenticationError("Not authorized, user not found")
    return user


# Dependency to get current user from token
async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    token = credentials.credentials if credentials else None
    return await user_from_token(db, token)
