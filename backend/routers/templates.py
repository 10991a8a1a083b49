"""
Templates Router

Document templates (.docx with content controls) used by the document
generation agent, plus the file download endpoint of the local blob backend.
"""

import logging
import mimetypes
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import Response

from models import User
from routers.auth import get_current_user
from schemas.knowledge import TemplateList, TemplateParameters
from services.blob_service import (
    GENERATED_DOCS_CONTAINER,
    TEMPLATES_CONTAINER,
    BlobService,
    get_blob_service,
)
from services.template_service import TemplateService, get_template_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/templates", tags=["templates"])
files_router = APIRouter(prefix="/api/files", tags=["files"])

# Knowledge files stay private; only these containers are served by link
PUBLIC_CONTAINERS = (GENERATED_DOCS_CONTAINER, TEMPLATES_CONTAINER)


@router.post("/upload", status_code=status.HTTP_201_CREATED)
async def upload_template(
    file: UploadFile = File(..., description="A .docx template, at most 10 MB"),
    service: TemplateService = Depends(get_template_service),
    current_user: User = Depends(get_current_user)
):
    data = await file.read()
    path = await service.upload_template(file.filename, data)
    logger.info(f"upload_template - user_id={current_user.user_id}, path={path}")
    return {"file_path": path}


@router.get("", response_model=TemplateList)
async def list_templates(
    service: TemplateService = Depends(get_template_service),
    current_user: User = Depends(get_current_user)
):
    return TemplateList(templates=await service.list_templates())


@router.get("/{template_name}/parameters", response_model=TemplateParameters)
async def get_template_parameters(
    template_name: str,
    service: TemplateService = Depends(get_template_service),
    current_user: User = Depends(get_current_user)
):
    """Payload skeleton to fill in: strings, checkbox booleans and repeating lists."""
    parameters = await service.get_parameters(template_name)
    return TemplateParameters(template_name=template_name, parameters=parameters)


@files_router.get("/{container}/{name}")
async def download_file(
    container: str,
    name: str,
    blob: BlobService = Depends(get_blob_service),
):
    """Serve a stored file. Links returned by the agents point here on the local backend."""
    if container not in PUBLIC_CONTAINERS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    data = await blob.download(name, container)
    if data is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    media_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
    return Response(
        content=data,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(name)}"},
    )
