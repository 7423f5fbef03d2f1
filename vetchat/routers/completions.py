"""
POST /api/chat/{chat_id}: streaming completion bridge.
Body is the oldest-first history ending with the newest user turn; the response is plain
text relayed fragment by fragment. Disconnecting aborts the upstream model call.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from vetchat.auth import get_current_user_id
from vetchat.database import get_db
from vetchat.errors import NotFound
from vetchat.repositories.chat_repository import ChatRepository
from vetchat.schemas.chat import CompletionRequest
from vetchat.services import ai_service
from vetchat.services.ai_stream_service import open_fragment_stream, stream_text_response
from vetchat.services.chat_service import ChatService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["completions"])


@router.post("/chat/{chat_id}")
async def stream_completion(
    chat_id: str,
    body: CompletionRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    chat = await ChatService(repository=ChatRepository()).get_chat(db, user_id, chat_id)
    if chat is None:
        raise NotFound("Chat not found")

    history = [m.model_dump() for m in body.messages]
    logger.info("Completion requested: chat=%s messages=%d", chat_id, len(history))

    stream = await open_fragment_stream(
        lambda stop: ai_service.generate_chat_stream(history, stop)
    )
    return stream_text_response(stream)
