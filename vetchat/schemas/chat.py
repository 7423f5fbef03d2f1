from datetime import datetime
from typing import Literal
from pydantic import BaseModel, Field, field_validator


Role = Literal["user", "assistant", "system"]
Status = Literal["pending", "streaming", "sent", "error"]


# ---- Chats ----

class ChatCreateRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=8000, description="First user message; also names the chat")


class ChatRenameRequest(BaseModel):
    name: str = Field(..., max_length=255)

    @field_validator("name")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v


class ChatOut(BaseModel):
    id: str
    name: str
    user_id: str
    created_at: datetime
    updated_at: datetime
    is_deleted: bool
    message_count: int

    class Config:
        from_attributes = True


class ChatPage(BaseModel):
    page: list[ChatOut]
    is_done: bool
    continue_cursor: str | None = None


# ---- Messages ----

class MessageCreateRequest(BaseModel):
    role: Role
    content: str = Field(..., max_length=100_000)


class MessageUpdateRequest(BaseModel):
    content: str | None = None  # uncapped: the client resends the whole reply on every fragment
    status: Status | None = None
    append: bool = False


class MessageOut(BaseModel):
    id: str
    chat_id: str
    role: Role
    content: str
    status: Status
    created_at: datetime
    updated_at: datetime | None = None
    tokens: int

    class Config:
        from_attributes = True


class MessagePage(BaseModel):
    page: list[MessageOut]
    is_done: bool
    continue_cursor: str | None = None


# ---- Completion bridge ----

class CompletionMessage(BaseModel):
    role: Role
    content: str


class CompletionRequest(BaseModel):
    messages: list[CompletionMessage] = Field(..., min_length=1, description="Oldest-first history, newest user turn last")
