"""
Chat Router

Endpoints for chat session persistence (list, read, rename, delete).
Sessions are created by the multi-agent endpoints.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Query, status
from typing import List
from pydantic import BaseModel

from models import User
from schemas.chat import ChatSummary, ChatMessageOut, ChatWithMessages, ChatTitleUpdate
from services import auth_service
from services.chat_service import (
    ChatService,
    get_chat_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chats", tags=["chats"])


class ChatsListResponse(BaseModel):
    """List of chats"""
    chats: List[ChatSummary]


@router.get("", response_model=ChatsListResponse)
async def list_chats(
    limit: int = Query(50, le=100),
    offset: int = Query(0, ge=0),
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(auth_service.validate_token)
):
    """List the user's chat sessions, most recent first."""
    logger.info(f"list_chats - user_id={current_user.user_id}, limit={limit}, offset={offset}")

    chats = await service.get_user_chats(
        user_id=current_user.user_id,
        limit=limit,
        offset=offset
    )

    logger.info(f"list_chats complete - user_id={current_user.user_id}, count={len(chats)}")
    return ChatsListResponse(chats=[ChatSummary.model_validate(c) for c in chats])


@router.get("/{chat_id}", response_model=ChatWithMessages)
async def get_chat(
    chat_id: int,
    limit: int = Query(100, le=500),
    offset: int = Query(0, ge=0),
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(auth_service.validate_token)
):
    """Get a chat with a page of its messages, oldest first."""
    logger.info(f"get_chat - user_id={current_user.user_id}, chat_id={chat_id}")

    chat = await service.get_chat(chat_id, current_user.user_id)
    if not chat:
        logger.warning(f"get_chat - not found - user_id={current_user.user_id}, chat_id={chat_id}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")

    messages = await service.get_messages(chat_id, current_user.user_id, limit=limit, offset=offset)

    logger.info(f"get_chat complete - user_id={current_user.user_id}, chat_id={chat_id}, message_count={len(messages)}")
    return ChatWithMessages(
        id=chat.id,
        title=chat.title,
        created_at=chat.created_at,
        updated_at=chat.updated_at,
        messages=[ChatMessageOut.model_validate(m) for m in messages]
    )


@router.patch("/{chat_id}", response_model=ChatSummary)
async def rename_chat(
    chat_id: int,
    update: ChatTitleUpdate,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(auth_service.validate_token)
):
    chat = await service.update_chat_title(chat_id, current_user.user_id, update.title)
    if not chat:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    return ChatSummary.model_validate(chat)


@router.delete("/{chat_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chat(
    chat_id: int,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(auth_service.validate_token)
):
    """Delete a chat and all its messages."""
    deleted = await service.delete_chat(chat_id, current_user.user_id)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    logger.info(f"delete_chat - user_id={current_user.user_id}, chat_id={chat_id}")
