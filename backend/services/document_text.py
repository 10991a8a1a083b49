"""
Text extraction for knowledge uploads.

Prose formats (.txt, .pdf, .docx) are flattened and split on spaces into
chunks of at most `chunk_size` characters. Tabular formats (.csv, .xlsx)
produce one "header:value | header:value" chunk per data row.
"""

import csv
import io
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import docx
import openpyxl
from pypdf import PdfReader

logger = logging.getLogger(__name__)

KNOWLEDGE_EXTENSIONS = (".pdf", ".docx", ".txt", ".xlsx", ".csv")


def chunk_text(text: str, chunk_size: int = 512) -> List[str]:
    """Greedily pack space-separated words into chunks no longer than chunk_size."""
    chunks: List[str] = []
    current = ""
    for word in text.split():
        # A single word longer than a chunk is hard-split
        while len(word) > chunk_size:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(word[:chunk_size])
            word = word[chunk_size:]
        if not word:
            continue
        if current and len(current) + 1 + len(word) > chunk_size:
            chunks.append(current)
            current = word
        else:
            current = f"{current} {word}" if current else word
    if current:
        chunks.append(current)
    return chunks


def _row_chunks(rows: Iterable[Sequence]) -> List[str]:
    rows = iter(rows)
    header: Optional[List[str]] = None
    for row in rows:
        if row and any(cell not in (None, "") for cell in row):
            header = ["" if cell is None else str(cell).strip() for cell in row]
            break
    if header is None:
        return []

    chunks = []
    for row in rows:
        pairs = []
        for name, cell in zip(header, row):
            if cell is None or str(cell).strip() == "":
                continue
            pairs.append(f"{name}:{str(cell).strip()}")
        if pairs:
            chunks.append(" | ".join(pairs))
    return chunks


def _pdf_text(data: bytes) -> str:
    reader = PdfReader(io.BytesIO(data))
    return "\n".join(page.extract_text() or "" for page in reader.pages)


def _docx_text(data: bytes) -> str:
    document = docx.Document(io.BytesIO(data))
    return "\n".join(p.text for p in document.paragraphs if p.text.strip())


def _csv_rows(data: bytes) -> List[List[str]]:
    text = data.decode("utf-8-sig", errors="replace")
    return list(csv.reader(io.StringIO(text)))


def _xlsx_rows(data: bytes) -> List[Sequence]:
    workbook = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    try:
        sheet = workbook.active
        return list(sheet.iter_rows(values_only=True))
    finally:
        workbook.close()


def extract_text_chunks(file_name: str, data: bytes, chunk_size: int = 512) -> List[str]:
    """
    Extract searchable chunks from an uploaded file.

    Returns an empty list for unsupported extensions or files with no text.
    Parser errors propagate to the caller.
    """
    extension = Path(file_name).suffix.lower()

    if extension == ".txt":
        return chunk_text(data.decode("utf-8", errors="replace"), chunk_size)
    if extension == ".pdf":
        return chunk_text(_pdf_text(data), chunk_size)
    if extension == ".docx":
        return chunk_text(_docx_text(data), chunk_size)
    if extension == ".csv":
        return _row_chunks(_csv_rows(data))
    if extension == ".xlsx":
        return _row_chunks(_xlsx_rows(data))

    logger.info(f"No text extractor for {file_name}")
    return []
