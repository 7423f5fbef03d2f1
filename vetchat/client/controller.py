"""
Chat view controller: loads a chat's messages and drives the send workflow
(persist user turn, placeholder, stream, persist whole buffer per fragment, terminal status).

`send` is the only writer of `state`. `stop()` cancels the fragment consumer; the workflow
then persists the buffer once as `sent` and nothing else for that run.
"""
import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol, Union

logger = logging.getLogger(__name__)

PAGE_SIZE = 20
FALLBACK_ERROR_CONTENT = "Failed to generate response"


class ChatBackend(Protocol):
    async def list_messages(self, chat_id: str, cursor: str | None = None, num_items: int = 20) -> dict: ...

    async def create_message(self, chat_id: str, role: str, content: str) -> str: ...

    async def update_message(
        self,
        message_id: str,
        *,
        content: str | None = None,
        status: str | None = None,
        append: bool = False,
    ) -> None: ...

    def stream_completion(self, chat_id: str, messages: list[dict]) -> AsyncIterator[str]: ...


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Sending:
    pass


@dataclass(frozen=True)
class Streaming:
    buffer: str = ""


@dataclass(frozen=True)
class Done:
    content: str


@dataclass(frozen=True)
class Failed:
    reason: str


SendState = Union[Idle, Sending, Streaming, Done, Failed]


@dataclass
class Notice:
    level: str
    text: str


class ChatController:
    def __init__(self, backend: ChatBackend, chat_id: str, page_size: int = PAGE_SIZE):
        self.backend = backend
        self.chat_id = chat_id
        self.page_size = page_size

        self.state: SendState = Idle()
        self.messages: list[dict] = []  # newest first
        self.is_done = False
        self.error: str | None = None
        self.pending_message_id: str | None = None
        self.notices: list[Notice] = []

        self._cursor: str | None = None
        self._buffer = ""
        self._consumer: asyncio.Task | None = None
        self._stop_requested = False
        self._auto_triggered = False

    @property
    def is_streaming(self) -> bool:
        return isinstance(self.state, (Sending, Streaming))

    @property
    def streaming_content(self) -> str:
        return self.state.buffer if isinstance(self.state, Streaming) else ""

    # ---- Loading ----

    async def load(self) -> None:
        page = await self.backend.list_messages(self.chat_id, None, self.page_size)
        self.messages = list(page["page"])
        self.is_done = page["is_done"]
        self._cursor = page.get("continue_cursor")

    async def load_more(self) -> None:
        if self.is_done or not self._cursor:
            return
        page = await self.backend.list_messages(self.chat_id, self._cursor, self.page_size)
        self.messages.extend(page["page"])
        self.is_done = page["is_done"]
        self._cursor = page.get("continue_cursor")

    async def mount(self, auto_trigger: bool = True) -> bool:
        """Load history, then answer a dangling user turn at most once. Returns True if it fired."""
        await self.load()
        if not auto_trigger or self._auto_triggered or self.is_streaming or not self.messages:
            return False
        newest = self.messages[0]
        if newest.get("role") != "user":
            return False
        self._auto_triggered = True
        await self.send(newest.get("content") or "", skip_user_message=True)
        return True

    # ---- Sending ----

    def stop(self) -> None:
        if not self.is_streaming:
            return
        self._stop_requested = True
        if self._consumer is not None and not self._consumer.done():
            self._consumer.cancel()

    def _history(self, text: str, replay: bool) -> list[dict]:
        """Loaded messages oldest-first, minus empty ones and failed (`error`) replies."""
        history = [
            {"role": m["role"], "content": m["content"]}
            for m in reversed(self.messages)
            if m.get("content") and m.get("status") != "error"
        ]
        if not replay:
            history.append({"role": "user", "content": text})
        return history

    async def _consume(self, message_id: str, history: list[dict]) -> str:
        stream = self.backend.stream_completion(self.chat_id, history)
        try:
            async for fragment in stream:
                if not fragment:
                    continue
                self._buffer += fragment
                self.state = Streaming(self._buffer)
                await self.backend.update_message(message_id, content=self._buffer, append=False)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
        return self._buffer

    async def send(self, content: str, skip_user_message: bool = False) -> None:
        text = (content or "").strip()
        if not text or self.is_streaming:
            return

        self.error = None
        self._stop_requested = False
        self._buffer = ""
        self.state = Sending()
        history = self._history(text, replay=skip_user_message)
        message_id = None

        try:
            if not skip_user_message:
                await self.backend.create_message(self.chat_id, "user", text)
            message_id = await self.backend.create_message(self.chat_id, "assistant", "")
            self.pending_message_id = message_id
            await self.backend.update_message(message_id, status="streaming")
            self.state = Streaming("")

            if not self._stop_requested:
                self._consumer = asyncio.ensure_future(self._consume(message_id, history))
                try:
                    await self._consumer
                except asyncio.CancelledError:
                    if not self._stop_requested:
                        raise
                finally:
                    self._consumer = None

            if self._stop_requested:
                logger.info("Generation stopped: chat=%s message=%s", self.chat_id, message_id)
                await self._persist_terminal(message_id, self._buffer, "sent")
            else:
                await self.backend.update_message(message_id, content=self._buffer, status="sent")
            self.state = Done(self._buffer)
        except asyncio.CancelledError:
            # The caller went away mid-run; close the message out as it stands
            if message_id is not None:
                await self._persist_terminal(message_id, self._buffer, "sent")
            self.state = Done(self._buffer)
            self.pending_message_id = None
            raise
        except Exception as e:
            reason = str(e) or e.__class__.__name__
            logger.warning("Send failed: chat=%s error=%s", self.chat_id, reason)
            self.error = reason
            self.notices.append(Notice("error", reason))
            self.state = Failed(reason)
            if message_id is not None:
                await self._persist_terminal(
                    message_id, self._buffer or FALLBACK_ERROR_CONTENT, "error"
                )

        self.pending_message_id = None
        try:
            await self.load()
        except Exception as e:
            logger.warning("Reload after send failed: chat=%s error=%s", self.chat_id, e)

    async def _persist_terminal(self, message_id: str, content: str, status: str) -> None:
        try:
            await self.backend.update_message(message_id, content=content, status=status)
            return
        except Exception as e:
            logger.warning("Could not save final content of message %s: %s", message_id, e)
        # Content was rejected; the status alone still moves the message out of streaming
        try:
            await self.backend.update_message(message_id, status=status)
        except Exception as e:
            logger.error("Could not finalize message %s as %s: %s", message_id, status, e)
