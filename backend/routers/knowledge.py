"""
Knowledge Router

Upload, list and delete the documents the RAG agent searches.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status

from models import User
from routers.auth import get_current_user
from schemas.knowledge import FileUploadResponse, KnowledgeDocumentOut
from services.knowledge_service import UPLOAD_OK_MESSAGE, KnowledgeService, get_knowledge_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/knowledge", tags=["knowledge"])


@router.post("/upload", response_model=FileUploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_knowledge_file(
    file: UploadFile = File(..., description="PDF, DOCX, TXT, XLSX or CSV, at most 10 MB"),
    description: Optional[str] = Form(None),
    service: KnowledgeService = Depends(get_knowledge_service),
    current_user: User = Depends(get_current_user)
):
    """Store a file and index its text for retrieval."""
    data = await file.read()
    logger.info(f"upload_knowledge_file - user_id={current_user.user_id}, file={file.filename}, bytes={len(data)}")

    document = await service.upload(current_user.user_id, file.filename, data, description)
    return FileUploadResponse(
        file_process_response=UPLOAD_OK_MESSAGE,
        file_path=document.blob_path,
        document=KnowledgeDocumentOut.model_validate(document),
    )


@router.get("", response_model=List[KnowledgeDocumentOut])
async def list_knowledge_files(
    service: KnowledgeService = Depends(get_knowledge_service),
    current_user: User = Depends(get_current_user)
):
    documents = await service.list_documents(current_user.user_id)
    return [KnowledgeDocumentOut.model_validate(d) for d in documents]


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_knowledge_file(
    document_id: int,
    service: KnowledgeService = Depends(get_knowledge_service),
    current_user: User = Depends(get_current_user)
):
    await service.delete_document(current_user.user_id, document_id)
