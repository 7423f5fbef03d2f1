"""
Chat and message store accessors.
- Every call takes the caller's user_id explicitly; the chat's user_id is the only ownership boundary.
- Plain chat reads mask foreign/deleted chats as absent; mutations and chat-scoped reads raise.
- Sync repository work runs in the default executor so the event loop never blocks on the DB.
"""
import asyncio
import logging

from sqlalchemy.orm import Session

from vetchat.config import get_settings
from vetchat.errors import NotFound, Unauthorized, ValidationFailure
from vetchat.models.chat import Chat
from vetchat.models.message import Message, MessageRole, MessageStatus
from vetchat.repositories.chat_repository import ChatRepository
from vetchat.utils.pagination import Page

logger = logging.getLogger(__name__)

CHAT_NAME_MAX_CHARS = 40


def chat_name_from_text(text: str) -> str:
    """Display name for a chat started from `text`: first 40 chars, ellipsis if cut."""
    return text[:CHAT_NAME_MAX_CHARS] + ("..." if len(text) > CHAT_NAME_MAX_CHARS else "")


class ChatService:
    """Owns authorization and field rules for chats/messages; persistence is in ChatRepository."""

    def __init__(self, repository: ChatRepository | None = None):
        self._repo = repository or ChatRepository()
        settings = get_settings()
        self._page_default = settings.page_size_default
        self._page_max = settings.page_size_max

    async def _run(self, fn):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, fn)

    def _num_items(self, num_items: int | None) -> int:
        if num_items is None:
            return self._page_default
        return max(1, min(num_items, self._page_max))

    def _owned_chat(self, db: Session, user_id: str, chat_id: str) -> Chat:
        """Active chat owned by user_id, else NotFound (missing/deleted) or Unauthorized (foreign)."""
        chat = self._repo.get_chat(db, chat_id)
        if chat is None or chat.is_deleted:
            raise NotFound("Chat not found")
        if chat.user_id != user_id:
            logger.warning("Chat access denied: chat=%s requested_by=%s", chat_id, user_id)
            raise Unauthorized("Unauthorized")
        return chat

    # ---- Chats ----

    async def list_chats(
        self,
        db: Session,
        user_id: str,
        cursor: str | None = None,
        num_items: int | None = None,
    ) -> Page:
        """User's active chats, newest first, one page at a time."""
        n = self._num_items(num_items)
        return await self._run(lambda: self._repo.list_active_chats(db, user_id, cursor, n))

    async def get_chat(self, db: Session, user_id: str, chat_id: str) -> Chat | None:
        """
        Single-chat read. Returns None when the chat is missing, deleted or owned by someone
        else, so callers cannot tell a foreign chat from a nonexistent one.
        """
        def _do():
            chat = self._repo.get_chat(db, chat_id)
            if chat is None or chat.user_id != user_id or chat.is_deleted:
                return None
            return chat

        return await self._run(_do)

    async def create_chat(
        self,
        db: Session,
        user_id: str,
        name: str,
        initial_message: str | None = None,
    ) -> str:
        chat = await self._run(
            lambda: self._repo.create_chat(db, user_id, name, initial_message or None)
        )
        logger.info("Chat created: chat=%s user=%s", chat.id, user_id)
        return chat.id

    async def rename_chat(self, db: Session, user_id: str, chat_id: str, name: str) -> None:
        name = (name or "").strip()
        if not name:
            raise ValidationFailure.for_field("name", "Name is required")

        def _do():
            chat = self._owned_chat(db, user_id, chat_id)
            self._repo.rename_chat(db, chat, name)

        await self._run(_do)

    async def soft_delete_chat(self, db: Session, user_id: str, chat_id: str) -> None:
        """Irreversible: marks deleted and clears the name."""
        def _do():
            chat = self._owned_chat(db, user_id, chat_id)
            self._repo.soft_delete_chat(db, chat)

        await self._run(_do)
        logger.info("Chat soft-deleted: chat=%s user=%s", chat_id, user_id)

    # ---- Messages ----

    async def list_messages(
        self,
        db: Session,
        user_id: str,
        chat_id: str,
        cursor: str | None = None,
        num_items: int | None = None,
    ) -> Page:
        """Messages newest first. Raises (not masks) when the chat is not the caller's."""
        n = self._num_items(num_items)

        def _do():
            self._owned_chat(db, user_id, chat_id)
            return self._repo.list_messages(db, chat_id, cursor, n)

        return await self._run(_do)

    async def create_message(
        self,
        db: Session,
        user_id: str,
        chat_id: str,
        role: str,
        content: str,
    ) -> str:
        if role not in {r.value for r in MessageRole}:
            raise ValidationFailure.for_field("role", f"Invalid role: {role}")

        def _do() -> Message:
            self._owned_chat(db, user_id, chat_id)
            return self._repo.create_message(db, chat_id, role, content)

        msg = await self._run(_do)
        return msg.id

    async def update_message(
        self,
        db: Session,
        user_id: str,
        message_id: str,
        *,
        content: str | None = None,
        status: str | None = None,
        append: bool = False,
    ) -> None:
        """
        Replace or append content and/or set status. Moving into `sent` bumps the chat's
        updated_at once; repeating it is a no-op for the chat. Status order is not enforced
        here: callers only move forward (pending -> streaming -> sent|error).
        """
        if status is not None and status not in {s.value for s in MessageStatus}:
            raise ValidationFailure.for_field("status", f"Invalid status: {status}")

        def _do():
            msg = self._repo.get_message(db, message_id)
            if msg is None:
                raise NotFound("Message not found")
            chat = self._repo.get_chat(db, msg.chat_id)
            if chat is None or chat.user_id != user_id:
                raise Unauthorized("Unauthorized")
            return self._repo.update_message(db, msg, content=content, status=status, append=append)

        completed = await self._run(_do)
        if completed:
            logger.debug("Message completed: message=%s", message_id)
