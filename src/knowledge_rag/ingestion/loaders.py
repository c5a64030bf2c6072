"""
Source Loader Module

Reads ingestion sources from disk:
- PDF (text layer via pypdf)
- TXT/Markdown (raw text)
- Q&A JSON (list of {question, answer, category?})

Also holds the registry of known documents and the source/file filters.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Sequence, Union

from pypdf import PdfReader

from knowledge_rag.errors import ValidationError

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = {".txt", ".md"}


@dataclass(frozen=True)
class SourceDocument:
    """A document registered for ingestion."""
    name: str
    source: str
    priority: str = "media"
    description: str = ""


DEFAULT_DOCUMENTS: List[SourceDocument] = [
    SourceDocument(
        name="manual_pba.pdf",
        source="manual_pba",
        priority="media",
        description="Manual Oficial Provincia BSAS",
    ),
    SourceDocument(
        name="cnev_autos.pdf",
        source="cnev_nacional",
        priority="media",
        description="Ley Nacional de Tránsito (CNEV)",
    ),
    SourceDocument(
        name="preguntas_examen.pdf",
        source="bateria_preguntas",
        priority="alta",
        description="Batería de Preguntas Examen",
    ),
]


def select_documents(
    documents: Iterable[SourceDocument],
    sources: Sequence[str] = (),
    files: Sequence[str] = (),
) -> List[SourceDocument]:
    """Apply source and file-name filters (an empty filter allows everything)."""
    enabled_sources = set(sources)
    enabled_files = set(files)
    selected = []
    for doc in documents:
        if enabled_sources and doc.source not in enabled_sources:
            continue
        if enabled_files and doc.name not in enabled_files:
            continue
        selected.append(doc)
    return selected


def load_pdf_text(path: Union[str, Path]) -> str:
    """Extract the text layer of every page, one page per line block."""
    reader = PdfReader(str(path))
    pages = [page.extract_text() or "" for page in reader.pages]
    logger.debug(f"Extracted {len(pages)} pages from {path}")
    return "\n".join(pages)


def load_document_text(path: Union[str, Path]) -> str:
    """
    Load raw text from a PDF, TXT or Markdown file.

    Raises:
        FileNotFoundError: The file does not exist
        ValueError: Unsupported file type
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(str(path))

    suffix = path.suffix.lower()
    if suffix == ".pdf":
        return load_pdf_text(path)
    if suffix in TEXT_SUFFIXES:
        return path.read_text(encoding="utf-8")
    raise ValueError(f"Unsupported file type: {path.name}")


def load_qa_items(path: Union[str, Path]) -> List[Any]:
    """Load a JSON array of Q&A items (items are validated by the ingestor)."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValidationError(f"{path}: expected a JSON array of Q&A items")
    return data
