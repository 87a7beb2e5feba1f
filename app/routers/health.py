from fastapi import APIRouter, Depends

from app.models.schemas import HealthResponse
from app.services.session_manager import SessionManager, get_session_manager

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(sessions: SessionManager = Depends(get_session_manager)):
    return HealthResponse(status="ok", active_sessions=len(sessions))
