from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


# --- Requests ---


class CreateChatRequest(BaseModel):
    message: Optional[str] = Field(default=None, min_length=1)
    name: Optional[str] = None


class SendMessageRequest(BaseModel):
    content: str = Field(min_length=1)
    role: Literal["user", "assistant"] = "user"


# --- Responses ---


class ChatResponse(BaseModel):
    id: UUID
    user_id: str
    name: str | None = None
    created_at: datetime
    updated_at: datetime | None = None


class MessageResponse(BaseModel):
    id: UUID
    chat_id: UUID
    role: str
    content: str
    created_at: datetime


class ProductResponse(BaseModel):
    id: UUID
    message_id: UUID
    name: str
    description: str
    price: str
    store_name: str | None = None
    url: str
    image_url: str
    created_at: datetime


class SourceResponse(BaseModel):
    id: UUID
    message_id: UUID
    url: str
    description: str | None = None
    created_at: datetime


class MessageWithProductsResponse(MessageResponse):
    products: list[ProductResponse] = []
    sources: list[SourceResponse] = []


class ChatMessagesResponse(BaseModel):
    chat: ChatResponse
    messages: list[MessageWithProductsResponse]


class RunStartResponse(BaseModel):
    run_id: str
    token: str
    message: MessageResponse | None = None


class CreateChatResponse(BaseModel):
    chat: ChatResponse
    message: MessageResponse | None = None
    run: RunStartResponse | None = None


class RunSnapshotResponse(BaseModel):
    run_id: str
    status: str | None
    entries: dict[str, Any]
    stream: dict[str, list[str]]
    closed: bool
    seq: int
