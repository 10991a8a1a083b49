"""
Knowledge base and document template schemas
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class KnowledgeDocumentOut(BaseModel):
    id: int
    file_name: str
    description: Optional[str] = None
    content_type: Optional[str] = None
    chunk_count: int = 0
    created_at: datetime

    class Config:
        from_attributes = True


class FileUploadResponse(BaseModel):
    file_process_response: str
    file_path: str
    document: Optional[KnowledgeDocumentOut] = None


class KnowledgeHit(BaseModel):
    """A chunk returned by similarity search."""
    file_name: str
    chunk_index: int
    text: str
    score: float


class TemplateList(BaseModel):
    templates: List[str] = Field(default_factory=list)


class TemplateParameters(BaseModel):
    template_name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
