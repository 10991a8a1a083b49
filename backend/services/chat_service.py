"""
Chat Service

Manages chat session persistence (CRUD operations on conversations and messages).
"""

import logging
from typing import List, Optional, Dict, Any, Tuple
from datetime import datetime
from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Conversation, Message
from fastapi import Depends
from database import get_async_db

logger = logging.getLogger(__name__)


class ChatService:
    """Service for managing chats and messages."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_chats(
        self,
        user_id: int,
        limit: int = 50,
        offset: int = 0
    ) -> List[Conversation]:
        """Get chats for a user, most recently active first."""
        stmt = (
            select(Conversation)
            .where(Conversation.user_id == user_id)
            .order_by(desc(Conversation.updated_at), desc(Conversation.id))
            .offset(offset)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_chat(
        self,
        chat_id: int,
        user_id: int
    ) -> Optional[Conversation]:
        """Get a chat by ID, ensuring it belongs to the user."""
        stmt = select(Conversation).where(
            Conversation.id == chat_id,
            Conversation.user_id == user_id
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_messages(
        self,
        chat_id: int,
        user_id: int,
        limit: int = 100,
        offset: int = 0
    ) -> List[Message]:
        """Get messages for a chat, oldest first."""
        chat = await self.get_chat(chat_id, user_id)
        if not chat:
            return []

        stmt = (
            select(Message)
            .where(Message.conversation_id == chat_id)
            .order_by(Message.created_at, Message.id)
            .offset(offset)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_recent_messages(
        self,
        chat_id: int,
        user_id: int,
        count: int = 10
    ) -> List[Message]:
        """Get the newest `count` messages of a chat, returned oldest first."""
        chat = await self.get_chat(chat_id, user_id)
        if not chat:
            return []

        stmt = (
            select(Message)
            .where(Message.conversation_id == chat_id)
            .order_by(desc(Message.created_at), desc(Message.id))
            .limit(count)
        )
        result = await self.db.execute(stmt)
        return list(reversed(result.scalars().all()))

    async def create_chat(
        self,
        user_id: int,
        title: Optional[str] = None
    ) -> Conversation:
        """Create a new chat."""
        chat = Conversation(user_id=user_id, title=title)
        self.db.add(chat)
        await self.db.commit()
        await self.db.refresh(chat)
        logger.debug(f"Created chat {chat.id} for user {user_id}")
        return chat

    def _stage_message(
        self,
        chat: Conversation,
        role: str,
        content: str,
        extras: Optional[Dict[str, Any]] = None
    ) -> Message:
        message = Message(
            conversation_id=chat.id,
            role=role,
            content=content,
            extras=extras
        )
        self.db.add(message)
        chat.updated_at = datetime.utcnow()

        # Auto-generate title from first user message if not set
        if not chat.title and role == 'user':
            chat.title = content[:50] + ('...' if len(content) > 50 else '')
        return message

    async def add_message(
        self,
        chat_id: int,
        user_id: int,
        role: str,
        content: str,
        extras: Optional[Dict[str, Any]] = None
    ) -> Optional[Message]:
        """Add a message to a chat."""
        chat = await self.get_chat(chat_id, user_id)
        if not chat:
            return None

        message = self._stage_message(chat, role, content, extras)
        await self.db.commit()
        await self.db.refresh(message)

        logger.debug(f"Added message to chat {chat_id}: role={role}")
        return message

    async def add_exchange(
        self,
        chat_id: int,
        user_id: int,
        user_content: str,
        assistant_content: str,
        extras: Optional[Dict[str, Any]] = None
    ) -> Optional[Tuple[Message, Message]]:
        """Persist a user turn and the reply to it in one commit."""
        chat = await self.get_chat(chat_id, user_id)
        if not chat:
            return None

        user_message = self._stage_message(chat, 'user', user_content)
        # Flush so the user row gets the lower id
        await self.db.flush()
        assistant_message = self._stage_message(chat, 'assistant', assistant_content, extras)
        await self.db.commit()
        await self.db.refresh(user_message)
        await self.db.refresh(assistant_message)

        logger.debug(f"Added exchange to chat {chat_id}")
        return user_message, assistant_message

    async def delete_chat(self, chat_id: int, user_id: int) -> bool:
        """Delete a chat and all its messages."""
        chat = await self.get_chat(chat_id, user_id)
        if chat:
            await self.db.delete(chat)
            await self.db.commit()
            return True
        return False

    async def update_chat_title(
        self,
        chat_id: int,
        user_id: int,
        title: str
    ) -> Optional[Conversation]:
        """Update chat title."""
        chat = await self.get_chat(chat_id, user_id)
        if chat:
            chat.title = title
            await self.db.commit()
            await self.db.refresh(chat)
        return chat


# Dependency injection provider for async chat service
async def get_chat_service(
    db: AsyncSession = Depends(get_async_db)
) -> ChatService:
    """Get a ChatService instance with async database session."""
    return ChatService(db)
