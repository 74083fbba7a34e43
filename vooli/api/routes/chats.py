from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from vooli.api.deps import get_manager, get_user_id
from vooli.models.schemas import (
    ChatMessagesResponse,
    ChatResponse,
    CreateChatRequest,
    CreateChatResponse,
    RunStartResponse,
    SendMessageRequest,
)
from vooli.services import database as db
from vooli.services import logger as log_service
from vooli.services.run_manager import RunManager

router = APIRouter(prefix="/api/chats", tags=["chats"])


async def _start_run(manager: RunManager, chat_id: str, content: str, message: dict | None) -> RunStartResponse:
    handle = await manager.submit_message(chat_id, content)
    log_service.log_event(
        event_type="run_submitted",
        message="Run submitted",
        run_id=handle.run_id,
        chat_id=chat_id,
    )
    return RunStartResponse(run_id=handle.run_id, token=handle.access_token, message=message)


@router.post("", response_model=CreateChatResponse)
async def create_chat(
    request: CreateChatRequest,
    user_id: str = Depends(get_user_id),
    manager: RunManager = Depends(get_manager),
):
    """Create a chat, optionally with a first user message that starts a run."""
    try:
        chat = await db.create_chat(user_id, name=request.message or request.name)
        message = None
        if request.message:
            message = await db.create_message(str(chat["id"]), "user", request.message)
    except Exception as e:
        log_service.log_event(event_type="db_error", message="Failed to create chat", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to create chat")

    run = None
    if message is not None:
        run = await _start_run(manager, str(chat["id"]), request.message, message)
    return CreateChatResponse(chat=chat, message=message, run=run)


@router.get("", response_model=list[ChatResponse])
async def list_chats(user_id: str = Depends(get_user_id)):
    try:
        return await db.get_chats(user_id)
    except Exception as e:
        log_service.log_event(event_type="db_error", message="Failed to list chats", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to list chats")


@router.post("/{chat_id}/messages", response_model=RunStartResponse)
async def send_message(
    chat_id: UUID,
    request: SendMessageRequest,
    user_id: str = Depends(get_user_id),
    manager: RunManager = Depends(get_manager),
):
    """Persist the user's message and start a run for it."""
    chat = await db.get_chat(str(chat_id), user_id)
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found or you don't have access to it")

    try:
        message = await db.create_message(str(chat_id), request.role, request.content)
    except Exception as e:
        log_service.log_event(event_type="db_error", message="Failed to send message", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to send message")

    return await _start_run(manager, str(chat_id), request.content, message)


@router.get("/{chat_id}/messages", response_model=ChatMessagesResponse)
async def get_chat_messages(chat_id: UUID, user_id: str = Depends(get_user_id)):
    """All messages of a chat, each with its products and sources."""
    chat = await db.get_chat(str(chat_id), user_id)
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found or you don't have access to it")

    messages = await db.get_messages(str(chat_id))
    detailed = []
    for msg in messages:
        message_id = str(msg["id"])
        try:
            products = await db.get_products(message_id)
            sources = await db.get_sources(message_id)
        except Exception as e:
            log_service.log_event(
                event_type="db_error",
                message=f"Error fetching products for message {message_id}",
                error=str(e),
            )
            products, sources = [], []
        detailed.append({**msg, "products": products, "sources": sources})

    return ChatMessagesResponse(chat=chat, messages=detailed)
