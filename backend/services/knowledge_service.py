"""
Knowledge Service

Upload, embed, search and delete a user's knowledge documents.
"""

import logging
import mimetypes
import uuid
from pathlib import Path
from typing import List, Optional

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config.settings import settings
from database import get_async_db
from exceptions import NotFoundError, UnsupportedFileError, ValidationError
from models import KnowledgeChunk, KnowledgeDocument
from schemas.knowledge import KnowledgeHit
from services.blob_service import KNOWLEDGE_CONTAINER, BlobService, get_blob_service
from services.document_text import KNOWLEDGE_EXTENSIONS, extract_text_chunks
from services.embedding_service import EmbeddingService, cosine_top_k

logger = logging.getLogger(__name__)

FILE_TOO_LARGE_MESSAGE = "Please add file less than 10 MB"
UNSUPPORTED_FILE_MESSAGE = "Unsuported File"
NO_TEXT_MESSAGE = "Could not extract text from the file."
UPLOAD_OK_MESSAGE = "File processed and stored successfully."


def validate_upload(file_name: str, data: bytes, allowed_extensions) -> None:
    """Raise UnsupportedFileError for a disallowed extension or an oversize file."""
    if Path(file_name or "").suffix.lower() not in allowed_extensions:
        raise UnsupportedFileError(UNSUPPORTED_FILE_MESSAGE)
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise UnsupportedFileError(FILE_TOO_LARGE_MESSAGE)


class KnowledgeService:
    """Service for the per-user knowledge base."""

    def __init__(
        self,
        db: AsyncSession,
        blob: Optional[BlobService] = None,
        embeddings: Optional[EmbeddingService] = None,
    ):
        self.db = db
        self.blob = blob or get_blob_service()
        self.embeddings = embeddings or EmbeddingService()

    async def upload(
        self,
        user_id: int,
        file_name: str,
        data: bytes,
        description: Optional[str] = None,
    ) -> KnowledgeDocument:
        """Store the file, extract and embed its chunks, and record the document."""
        validate_upload(file_name, data, KNOWLEDGE_EXTENSIONS)

        chunks = extract_text_chunks(file_name, data, settings.CHUNK_SIZE)
        if not chunks:
            raise ValidationError(NO_TEXT_MESSAGE)

        vectors = await self.embeddings.embed(chunks)

        # Stored under a unique name so re-uploads never overwrite each other
        blob_name = f"{uuid.uuid4().hex}_{Path(file_name).name}"
        blob_path = await self.blob.upload(data, blob_name, KNOWLEDGE_CONTAINER)

        document = KnowledgeDocument(
            user_id=user_id,
            file_name=Path(file_name).name,
            description=description,
            blob_path=blob_path,
            content_type=mimetypes.guess_type(file_name)[0],
            chunk_count=len(chunks),
        )
        document.chunks = [
            KnowledgeChunk(chunk_index=i, text=text, embedding=list(vector))
            for i, (text, vector) in enumerate(zip(chunks, vectors))
        ]
        self.db.add(document)
        await self.db.commit()
        await self.db.refresh(document)

        logger.info(f"Stored knowledge document {document.id} for user {user_id}: {len(chunks)} chunks")
        return document

    async def list_documents(self, user_id: int) -> List[KnowledgeDocument]:
        stmt = (
            select(KnowledgeDocument)
            .where(KnowledgeDocument.user_id == user_id)
            .order_by(KnowledgeDocument.created_at.desc(), KnowledgeDocument.id.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def delete_document(self, user_id: int, document_id: int) -> None:
        stmt = select(KnowledgeDocument).where(
            KnowledgeDocument.id == document_id,
            KnowledgeDocument.user_id == user_id,
        )
        document = (await self.db.execute(stmt)).scalars().first()
        if not document:
            raise NotFoundError(f"Knowledge document {document_id} not found")

        container, _, blob_name = document.blob_path.partition("/")
        await self.blob.delete(blob_name, container)
        await self.db.delete(document)
        await self.db.commit()
        logger.info(f"Deleted knowledge document {document_id} for user {user_id}")

    async def search(self, user_id: int, query: str, top_k: Optional[int] = None) -> List[KnowledgeHit]:
        """Similarity search over every chunk the user owns."""
        stmt = (
            select(KnowledgeChunk)
            .join(KnowledgeDocument, KnowledgeChunk.document_id == KnowledgeDocument.id)
            .where(KnowledgeDocument.user_id == user_id)
            .options(selectinload(KnowledgeChunk.document))
        )
        chunks = list((await self.db.execute(stmt)).scalars().all())
        if not chunks:
            return []

        query_vector = await self.embeddings.embed_one(query)
        ranked = cosine_top_k(query_vector, [c.embedding for c in chunks], top_k or settings.RAG_TOP_K)

        return [
            KnowledgeHit(
                file_name=chunks[i].document.file_name,
                chunk_index=chunks[i].chunk_index,
                text=chunks[i].text,
                score=score,
            )
            for i, score in ranked
        ]


async def get_knowledge_service(
    db: AsyncSession = Depends(get_async_db)
) -> KnowledgeService:
    return KnowledgeService(db)
