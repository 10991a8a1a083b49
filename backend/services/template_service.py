"""
Template Service

Word templates are .docx files whose fillable fields are content controls
(w:sdt) identified by their tag. A block or row control that contains other
tagged controls is a repeating section: it is cloned once per item of a
list value.

extract_template_payload() describes what a template needs;
populate_template() fills it in.
"""

import copy
import io
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import docx
from docx.oxml.ns import qn

from exceptions import TemplateNotFoundError
from services.blob_service import (
    GENERATED_DOCS_CONTAINER,
    TEMPLATES_CONTAINER,
    BlobService,
    get_blob_service,
)
from services.knowledge_service import validate_upload

logger = logging.getLogger(__name__)

TEMPLATE_EXTENSIONS = (".docx",)

W14_CHECKBOX = "{http://schemas.microsoft.com/office/word/2010/wordml}checkbox"
CHECKED_BOX = "☒"
UNCHECKED_BOX = "☐"

_BLOCK_CONTENT = (qn("w:p"), qn("w:tbl"), qn("w:tr"))


# =============================================================================
# Content control helpers
# =============================================================================

def _tag(sdt) -> Optional[str]:
    sdt_pr = sdt.find(qn("w:sdtPr"))
    if sdt_pr is None:
        return None
    tag = sdt_pr.find(qn("w:tag"))
    if tag is None:
        return None
    value = tag.get(qn("w:val"))
    return value if value and value.strip() else None


def _is_checkbox(sdt) -> bool:
    sdt_pr = sdt.find(qn("w:sdtPr"))
    return sdt_pr is not None and sdt_pr.find(W14_CHECKBOX) is not None


def _is_block_or_row(sdt) -> bool:
    """True for block-level and table-row controls; run and cell controls can't repeat."""
    content = sdt.find(qn("w:sdtContent"))
    if content is None:
        return False
    return any(child.tag in _BLOCK_CONTENT for child in content)


def _descendant_sdts(element) -> List[Any]:
    """All w:sdt below element, in document order, excluding element itself."""
    return [e for e in element.iter(qn("w:sdt")) if e is not element]


def _set_single_text(sdt, value: str) -> None:
    """Put value in the first w:t and blank the rest."""
    texts = list(sdt.iter(qn("w:t")))
    if not texts:
        return
    texts[0].text = value
    for text in texts[1:]:
        text.text = ""


# =============================================================================
# Payload extraction
# =============================================================================

def _payload_from_sdts(sdts: List[Any]) -> Dict[str, Any]:
    repeaters: Dict[str, List[Any]] = {}
    nested_tags = set()

    for sdt in sdts:
        tag = _tag(sdt)
        if not tag or not _is_block_or_row(sdt):
            continue
        inner = [child for child in _descendant_sdts(sdt) if _tag(child)]
        if inner:
            repeaters.setdefault(tag, inner)
            nested_tags.update(_tag(child) for child in inner)

    payload: Dict[str, Any] = {}
    for sdt in sdts:
        tag = _tag(sdt)
        if not tag or tag in payload:
            continue
        if tag in repeaters:
            payload[tag] = [_payload_from_sdts(repeaters[tag])]
        elif tag not in nested_tags:
            payload[tag] = False if _is_checkbox(sdt) else ""
    return payload


def extract_template_payload(docx_bytes: bytes) -> Dict[str, Any]:
    """
    Describe the inputs a template expects.

    Returns:
        {tag: ""} for text controls, {tag: False} for checkboxes and
        {tag: [{child tags...}]} for repeating sections
    """
    document = docx.Document(io.BytesIO(docx_bytes))
    return _payload_from_sdts(_descendant_sdts(document.element.body))


# =============================================================================
# Population
# =============================================================================

def _populate(parent, payload: Dict[str, Any]) -> None:
    for sdt in _descendant_sdts(parent):
        tag = _tag(sdt)
        if not tag or payload.get(tag) is None:
            continue
        value = payload[tag]

        if isinstance(value, bool):
            if _is_checkbox(sdt):
                _set_single_text(sdt, CHECKED_BOX if value else UNCHECKED_BOX)
        elif isinstance(value, (str, int, float)):
            _set_single_text(sdt, str(value))
        elif isinstance(value, list):
            container = sdt.getparent()
            if container is None:
                continue
            prototype = copy.deepcopy(sdt)
            # Clones go where the prototype was, in item order
            anchor = sdt
            for item in value:
                if not isinstance(item, dict):
                    continue
                clone = copy.deepcopy(prototype)
                _populate(clone, item)
                anchor.addnext(clone)
                anchor = clone
            container.remove(sdt)


def populate_template(docx_bytes: bytes, payload: Dict[str, Any]) -> bytes:
    """Fill a template's content controls from payload and return the new .docx bytes."""
    document = docx.Document(io.BytesIO(docx_bytes))
    _populate(document.element.body, payload)
    output = io.BytesIO()
    document.save(output)
    return output.getvalue()


# =============================================================================
# Service
# =============================================================================

class TemplateService:
    """Template storage and document generation on top of the blob backend."""

    def __init__(self, blob: Optional[BlobService] = None):
        self.blob = blob or get_blob_service()

    async def list_templates(self) -> List[str]:
        names = await self.blob.list(TEMPLATES_CONTAINER)
        return [n for n in names if n.lower().endswith(TEMPLATE_EXTENSIONS)]

    async def upload_template(self, file_name: str, data: bytes) -> str:
        validate_upload(file_name, data, TEMPLATE_EXTENSIONS)
        name = Path(file_name).name
        path = await self.blob.upload(data, name, TEMPLATES_CONTAINER)
        logger.info(f"Uploaded template {name}")
        return path

    async def _load(self, template_name: str) -> bytes:
        data = await self.blob.download(Path(template_name).name, TEMPLATES_CONTAINER)
        if data is None:
            raise TemplateNotFoundError(template_name)
        return data

    async def get_parameters(self, template_name: str) -> Dict[str, Any]:
        """Payload skeleton of a template; empty when the template does not exist."""
        try:
            data = await self._load(template_name)
        except TemplateNotFoundError:
            logger.info(f"Template {template_name} not found")
            return {}
        return extract_template_payload(data)

    async def generate(self, template_name: str, inputs: Dict[str, Any]) -> str:
        """Populate a template, store the result, and return its download URL."""
        data = await self._load(template_name)
        document_bytes = populate_template(data, inputs or {})

        output_name = f"Generated_{uuid.uuid4()}.docx"
        await self.blob.upload(document_bytes, output_name, GENERATED_DOCS_CONTAINER)
        logger.info(f"Generated {output_name} from template {template_name}")
        return self.blob.url_for(output_name, GENERATED_DOCS_CONTAINER)


def get_template_service() -> TemplateService:
    return TemplateService()
