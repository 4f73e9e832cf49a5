import logging

from fastapi import Depends
from fastapi.staticfiles import StaticFiles
from pathlib import Path

from .common import app, get_current_user
from .config import settings
from .models import User
from .routers.auth.endpoints import router as AuthEndpoints
from .routers.users.endpoints import router as UsersEndpoints
from .routers.chats.endpoints import router as ChatsEndpoints
from .routers.messages.endpoints import router as MessagesEndpoints
from .routers.invite_codes.endpoints import router as InviteCodesEndpoints
from .routers.websocket.endpoints import router as WebSocketEndpoints
from .schemas.users import UserOut
from .services.projections import user_out

logger = logging.getLogger(__name__)

# Include routers
app.include_router(AuthEndpoints)
app.include_router(UsersEndpoints)
app.include_router(ChatsEndpoints)
app.include_router(MessagesEndpoints)
app.include_router(InviteCodesEndpoints)
app.include_router(WebSocketEndpoints)

# Uploaded attachments
Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")


@app.get("/api/health")
async def health_check():
    return {"status": "ok"}


@app.get("/api/me", response_model=UserOut)
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    return user_out(current_user)
