import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, StreamingResponse

from app.config import Settings, get_settings
from app.core.errors import AppError, UpstreamError, ValidationError
from app.models.schemas import JoinRequest, JoinResponse
from app.services import quiz_service, relay_service
from app.services.game_client import GameClient, get_game_client_factory
from app.services.session_manager import SessionManager, get_session_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/kahoot", tags=["kahoot"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def _read_join_request(request: Request) -> JoinRequest:
    try:
        body = await request.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    pin = body.get("pin")
    name = body.get("name")
    return JoinRequest(
        pin=str(pin) if pin not in (None, "") else None,
        name=str(name) if name not in (None, "") else None,
    )


@router.post("/connect", response_model=JoinResponse)
async def connect(
    request: Request,
    settings: Settings = Depends(get_settings),
    client_factory: Callable[[str], GameClient] = Depends(get_game_client_factory),
):
    body = await _read_join_request(request)
    if not body.pin:
        raise ValidationError("PIN is required")
    if not body.name:
        raise ValidationError("Name is required")

    try:
        return await relay_service.join_once(
            body.pin, body.name, settings=settings, client_factory=client_factory,
        )
    except AppError:
        raise
    except Exception as e:
        logger.exception("Game connection error")
        raise UpstreamError("Failed to connect") from e


@router.get("/fetch-quiz")
async def fetch_quiz(
    quizId: Optional[str] = None,
    settings: Settings = Depends(get_settings),
):
    if not quizId:
        raise ValidationError("Quiz ID is required")
    try:
        quiz = await quiz_service.fetch_quiz(quizId, settings=settings)
    except UpstreamError as e:
        logger.error("Error fetching quiz %s: %s", quizId, e.message)
        raise UpstreamError("Failed to fetch quiz data") from e
    return quiz.to_wire()


@router.get("/stream")
async def stream(
    pin: Optional[str] = None,
    name: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    sessions: SessionManager = Depends(get_session_manager),
    client_factory: Callable[[str], GameClient] = Depends(get_game_client_factory),
):
    if not pin or not name:
        return PlainTextResponse("PIN and name are required", status_code=400)

    relay = relay_service.GameRelay(
        pin,
        name,
        settings=settings,
        sessions=sessions,
        client_factory=client_factory,
        fetcher=quiz_service.fetch_quiz,
    )
    relay.start()
    return StreamingResponse(
        relay.stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
