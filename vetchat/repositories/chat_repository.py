"""
Chat persistence: Chat + Message rows. DB as source of truth.
All operations are sync (called through run_in_executor from ChatService).
No ownership checks here; ChatService authorizes before calling in.
"""
import math
import uuid
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from vetchat.models.chat import Chat
from vetchat.models.message import Message, MessageRole, MessageStatus
from vetchat.utils.clock import utcnow
from vetchat.utils.pagination import Page, paginate_desc


def is_valid_id(value: str | None) -> bool:
    """True for identifiers we could have issued (UUID strings)."""
    if not value:
        return False
    try:
        uuid.UUID(value)
    except (ValueError, AttributeError, TypeError):
        return False
    return True


def estimate_tokens(content: str) -> int:
    return math.ceil(len(content) / 4)


def _next_created_at(latest: datetime | None) -> datetime:
    """Insertion stamp, strictly after `latest` so ordering by created_at is total."""
    now = utcnow()
    if latest is not None and now <= latest:
        return latest + timedelta(microseconds=1)
    return now


# ---- Chats ----


def get_chat(db: Session, chat_id: str) -> Chat | None:
    if not is_valid_id(chat_id):
        return None
    return db.get(Chat, chat_id)


def list_active_chats(db: Session, user_id: str, cursor: str | None, num_items: int) -> Page:
    """Chats of `user_id` that are not soft-deleted, newest first."""
    query = db.query(Chat).filter(Chat.user_id == user_id, Chat.is_deleted.is_(False))
    return paginate_desc(query, Chat, cursor, num_items)


def create_chat(
    db: Session,
    user_id: str,
    name: str,
    initial_message: str | None = None,
) -> Chat:
    """Insert the chat and, if given, its first user message in one transaction."""
    latest = db.query(func.max(Chat.created_at)).filter(Chat.user_id == user_id).scalar()
    now = _next_created_at(latest)
    chat = Chat(
        user_id=user_id,
        name=name,
        created_at=now,
        updated_at=now,
        is_deleted=False,
        message_count=1 if initial_message else 0,
    )
    try:
        db.add(chat)
        db.flush()
        if initial_message:
            db.add(
                Message(
                    chat_id=chat.id,
                    role=MessageRole.USER.value,
                    content=initial_message,
                    status=MessageStatus.SENT.value,
                    created_at=now,
                    tokens=estimate_tokens(initial_message),
                )
            )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(chat)
    return chat


def rename_chat(db: Session, chat: Chat, name: str) -> None:
    chat.name = name
    chat.updated_at = utcnow()
    db.commit()


def soft_delete_chat(db: Session, chat: Chat) -> None:
    chat.is_deleted = True
    chat.name = ""
    chat.updated_at = utcnow()
    db.commit()


# ---- Messages ----


def get_message(db: Session, message_id: str) -> Message | None:
    if not is_valid_id(message_id):
        return None
    return db.get(Message, message_id)


def list_messages(db: Session, chat_id: str, cursor: str | None, num_items: int) -> Page:
    """Messages of one chat, newest first."""
    query = db.query(Message).filter(Message.chat_id == chat_id)
    return paginate_desc(query, Message, cursor, num_items)


def create_message(db: Session, chat_id: str, role: str, content: str) -> Message:
    """Insert a message and bump the chat's message_count/updated_at in the same transaction."""
    latest = db.query(func.max(Message.created_at)).filter(Message.chat_id == chat_id).scalar()
    now = _next_created_at(latest)
    status = MessageStatus.SENT.value if role == MessageRole.USER.value else MessageStatus.PENDING.value
    msg = Message(
        chat_id=chat_id,
        role=role,
        content=content,
        status=status,
        created_at=now,
        tokens=estimate_tokens(content),
    )
    try:
        db.add(msg)
        db.query(Chat).filter(Chat.id == chat_id).update(
            {Chat.message_count: Chat.message_count + 1, Chat.updated_at: now},
            synchronize_session=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(msg)
    return msg


def update_message(
    db: Session,
    message: Message,
    *,
    content: str | None = None,
    status: str | None = None,
    append: bool = False,
) -> bool:
    """
    Apply a content and/or status change. Append concatenates only onto non-empty content.
    Returns True when this call moved the message into `sent` (the chat's updated_at was bumped).
    Token estimate is a creation-time snapshot and is not recomputed here.
    """
    now = utcnow()
    previous_status = message.status
    if status is not None:
        message.status = status
    if content is not None:
        if append and message.content:
            message.content = message.content + content
        else:
            message.content = content
        message.updated_at = now
    completed = status == MessageStatus.SENT.value and previous_status != MessageStatus.SENT.value
    if completed:
        db.query(Chat).filter(Chat.id == message.chat_id).update(
            {Chat.updated_at: now},
            synchronize_session=False,
        )
    db.commit()
    return completed


class ChatRepository:
    """Thin wrapper for dependency injection; delegates to module functions."""

    @staticmethod
    def get_chat(db: Session, chat_id: str) -> Chat | None:
        return get_chat(db, chat_id)

    @staticmethod
    def list_active_chats(db: Session, user_id: str, cursor: str | None, num_items: int) -> Page:
        return list_active_chats(db, user_id, cursor, num_items)

    @staticmethod
    def create_chat(db: Session, user_id: str, name: str, initial_message: str | None = None) -> Chat:
        return create_chat(db, user_id, name, initial_message)

    @staticmethod
    def rename_chat(db: Session, chat: Chat, name: str) -> None:
        return rename_chat(db, chat, name)

    @staticmethod
    def soft_delete_chat(db: Session, chat: Chat) -> None:
        return soft_delete_chat(db, chat)

    @staticmethod
    def get_message(db: Session, message_id: str) -> Message | None:
        return get_message(db, message_id)

    @staticmethod
    def list_messages(db: Session, chat_id: str, cursor: str | None, num_items: int) -> Page:
        return list_messages(db, chat_id, cursor, num_items)

    @staticmethod
    def create_message(db: Session, chat_id: str, role: str, content: str) -> Message:
        return create_message(db, chat_id, role, content)

    @staticmethod
    def update_message(
        db: Session,
        message: Message,
        *,
        content: str | None = None,
        status: str | None = None,
        append: bool = False,
    ) -> bool:
        return update_message(db, message, content=content, status=status, append=append)
