"""REST router aggregation."""

from fastapi import APIRouter, Depends

from projectchat.api.deps import limit_general
from projectchat.api.routes.chats import router as chats_router
from projectchat.api.routes.messages import router as messages_router

api_router = APIRouter(prefix="/api", dependencies=[Depends(limit_general)])
api_router.include_router(chats_router)
api_router.include_router(messages_router)
