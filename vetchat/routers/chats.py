"""
Chat and message endpoints. Identity comes from the bearer token and is passed to
ChatService explicitly; ownership failures surface as VetchatError and are mapped in main.
- GET    /api/chats                     active chats, newest first (cursor pages)
- POST   /api/chats                     new chat from a first message
- GET    /api/chats/{id}                one chat (404 for missing, deleted or foreign)
- PATCH  /api/chats/{id}                rename
- DELETE /api/chats/{id}                soft delete
- GET    /api/chats/{id}/messages       messages, newest first (cursor pages)
- POST   /api/chats/{id}/messages       add message
- PATCH  /api/messages/{id}             replace/append content, set status
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from vetchat.auth import get_current_user_id
from vetchat.database import get_db
from vetchat.errors import NotFound
from vetchat.repositories.chat_repository import ChatRepository
from vetchat.schemas.chat import (
    ChatCreateRequest,
    ChatOut,
    ChatPage,
    ChatRenameRequest,
    MessageCreateRequest,
    MessageOut,
    MessagePage,
    MessageUpdateRequest,
)
from vetchat.services.chat_service import ChatService, chat_name_from_text

router = APIRouter(prefix="/api", tags=["chats"])


def _get_chat_service_dep() -> ChatService:
    return ChatService(repository=ChatRepository())


# ---------- Chats ----------


@router.get("/chats", response_model=ChatPage)
async def list_chats(
    cursor: str | None = None,
    num_items: int | None = Query(None, ge=1),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    chat_service: ChatService = Depends(_get_chat_service_dep),
):
    page = await chat_service.list_chats(db, user_id, cursor=cursor, num_items=num_items)
    return ChatPage(
        page=[ChatOut.model_validate(c) for c in page.page],
        is_done=page.is_done,
        continue_cursor=page.continue_cursor,
    )


@router.post("/chats")
async def create_chat(
    body: ChatCreateRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    chat_service: ChatService = Depends(_get_chat_service_dep),
):
    """Start a chat: the text becomes the first (sent) user message and names the chat."""
    chat_id = await chat_service.create_chat(
        db, user_id, chat_name_from_text(body.text), initial_message=body.text
    )
    return {"success": True, "message": "Saved", "metadata": {"data": chat_id}}


@router.get("/chats/{chat_id}", response_model=ChatOut)
async def get_chat(
    chat_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    chat_service: ChatService = Depends(_get_chat_service_dep),
):
    chat = await chat_service.get_chat(db, user_id, chat_id)
    if chat is None:
        raise NotFound("Chat not found")
    return ChatOut.model_validate(chat)


@router.patch("/chats/{chat_id}", status_code=status.HTTP_204_NO_CONTENT)
async def rename_chat(
    chat_id: str,
    body: ChatRenameRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    chat_service: ChatService = Depends(_get_chat_service_dep),
):
    await chat_service.rename_chat(db, user_id, chat_id, body.name)


@router.delete("/chats/{chat_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chat(
    chat_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    chat_service: ChatService = Depends(_get_chat_service_dep),
):
    await chat_service.soft_delete_chat(db, user_id, chat_id)


# ---------- Messages ----------


@router.get("/chats/{chat_id}/messages", response_model=MessagePage)
async def list_messages(
    chat_id: str,
    cursor: str | None = None,
    num_items: int | None = Query(None, ge=1),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    chat_service: ChatService = Depends(_get_chat_service_dep),
):
    page = await chat_service.list_messages(db, user_id, chat_id, cursor=cursor, num_items=num_items)
    return MessagePage(
        page=[MessageOut.model_validate(m) for m in page.page],
        is_done=page.is_done,
        continue_cursor=page.continue_cursor,
    )


@router.post("/chats/{chat_id}/messages", status_code=status.HTTP_201_CREATED)
async def create_message(
    chat_id: str,
    body: MessageCreateRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    chat_service: ChatService = Depends(_get_chat_service_dep),
):
    message_id = await chat_service.create_message(db, user_id, chat_id, body.role, body.content)
    return {"id": message_id}


@router.patch("/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def update_message(
    message_id: str,
    body: MessageUpdateRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    chat_service: ChatService = Depends(_get_chat_service_dep),
):
    await chat_service.update_message(
        db,
        user_id,
        message_id,
        content=body.content,
        status=body.status,
        append=body.append,
    )
