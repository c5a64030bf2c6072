"""
Content Normalizer for Knowledge-RAG

Turns raw extracted text (mostly PDF text layers) into retrieval-ready chunks:
1. Ordered cleaning pipeline of pure text -> text transforms
2. Recursive character splitting with overlap
3. Flattening of chunks to single-line text
4. Heuristic quality filter for low-value chunks

Transform order is significant: hyphenated words are rejoined before
whitespace is collapsed, page furniture is removed before blank lines are
collapsed.
"""

import logging
import re
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

TextTransform = Callable[[str], str]

# Quality thresholds for stored chunks
MIN_CHUNK_CHARS = 80
MIN_CHUNK_WORDS = 8
MAX_DIGIT_RATIO = 0.4

_BULLET_RE = re.compile(r"[•·●○■□▪▫]")
_HYPHENATED_RE = re.compile(r"(\w+)-\s*\n\s*(\w+)")
_PAGE_NUMBER_RE = re.compile(r"^[ \t]*\d+[ \t]*$", re.MULTILINE)
_PAGE_HEADER_RE = re.compile(
    r"^[ \t]*(?:Página|Pagina|Page|Pág\.?|Pag\.?)[ \t]*\d+(?:[ \t]*(?:de|of)[ \t]*\d+)?[ \t]*$",
    re.MULTILINE | re.IGNORECASE,
)
_TOC_LINE_RE = re.compile(r"^.*\.{3,}[ \t]*\d+[ \t]*$", re.MULTILINE)
_LETTER_SPACED_RE = re.compile(r"\b(\w)[ \t](\w)[ \t](\w)[ \t](\w)\b")
_MULTI_SPACE_RE = re.compile(r"[ \t]{2,}")
_MULTI_BLANK_RE = re.compile(r"\n{3,}")
_HEADING_RE = re.compile(
    r"^(?:cap[ií]tulo|secci[oó]n|art[ií]culo|t[ií]tulo|[ií]ndice|anexo"
    r"|chapter|section|article|title|index|annex)\s*\d*\s*$",
    re.IGNORECASE,
)
_DIGIT_RE = re.compile(r"\d")

# Default separators for recursive splitting (ordered by priority)
DEFAULT_SEPARATORS = [
    "\n\n",        # Paragraphs
    "\n",          # Lines
    ". ",          # Sentence end
    "? ",          # Question end
    "! ",          # Exclamation end
    "; ",          # Semicolon
    ", ",          # Comma
    " ",           # Space
    "",            # Character-level (hard cut)
]


# ═══════════════════════════════════════════════════════════════════════════════
# CLEANING TRANSFORMS
# ═══════════════════════════════════════════════════════════════════════════════

def remove_null_bytes(text: str) -> str:
    """PostgreSQL rejects NUL in text columns."""
    return text.replace("\x00", "")


def remove_replacement_chars(text: str) -> str:
    return text.replace("�", "")


def normalize_bullets(text: str) -> str:
    return _BULLET_RE.sub("-", text)


def join_hyphenated_words(text: str) -> str:
    """Rejoin words split across a line break ("conduc-\\nción" -> "conducción")."""
    return _HYPHENATED_RE.sub(r"\1\2", text)


def strip_page_numbers(text: str) -> str:
    return _PAGE_NUMBER_RE.sub("", text)


def strip_page_headers(text: str) -> str:
    """Drop "Página 3", "Page 3 of 10", "Pág. 4 de 9" lines."""
    return _PAGE_HEADER_RE.sub("", text)


def strip_toc_lines(text: str) -> str:
    """Drop table-of-contents lines ("Señales ........ 12")."""
    return _TOC_LINE_RE.sub("", text)


def collapse_letter_spacing(text: str) -> str:
    """
    Collapse artificially letter-spaced text ("h o l a" -> "hola").

    Works on a four-letter sliding window, so only runs of at least four
    single characters are affected.
    """
    return _LETTER_SPACED_RE.sub(r"\1\2\3\4", text)


def collapse_spaces(text: str) -> str:
    return _MULTI_SPACE_RE.sub(" ", text)


def collapse_blank_lines(text: str) -> str:
    """At most one blank line between paragraphs."""
    return _MULTI_BLANK_RE.sub("\n\n", text)


CLEANING_PIPELINE: Tuple[TextTransform, ...] = (
    remove_null_bytes,
    remove_replacement_chars,
    normalize_bullets,
    join_hyphenated_words,
    strip_page_numbers,
    strip_page_headers,
    strip_toc_lines,
    collapse_letter_spacing,
    collapse_spaces,
    collapse_blank_lines,
)


def clean_raw_text(raw: str, pipeline: Sequence[TextTransform] = CLEANING_PIPELINE) -> str:
    """Apply the cleaning transforms in order."""
    text = raw
    for transform in pipeline:
        text = transform(text)
    return text.strip()


def clean_chunk_text(chunk: str) -> str:
    """Flatten a chunk to single-line text with single spaces."""
    text = re.sub(r"\n{2,}", " ", chunk)
    text = text.replace("\n", " ")
    text = re.sub(r"\s{2,}", " ", text)
    return text.strip()


def is_valid_chunk(text: str) -> bool:
    """
    Decide whether a chunk carries enough meaning to be stored.

    Rejects short fragments, bare section headings and number-heavy spans
    (tables, indexes).
    """
    if len(text) < MIN_CHUNK_CHARS:
        return False

    if len(text.split()) < MIN_CHUNK_WORDS:
        return False

    if _HEADING_RE.match(text.strip()):
        return False

    digit_ratio = len(_DIGIT_RE.findall(text)) / len(text)
    if digit_ratio > MAX_DIGIT_RATIO:
        return False

    return True


# ═══════════════════════════════════════════════════════════════════════════════
# Q&A PAIRS
# ═══════════════════════════════════════════════════════════════════════════════

def is_valid_qa_item(item: Any) -> bool:
    """A Q&A item needs a non-empty question and answer."""
    if not isinstance(item, Mapping):
        return False
    question = item.get("question")
    answer = item.get("answer")
    return (
        isinstance(question, str)
        and bool(question.strip())
        and isinstance(answer, str)
        and bool(answer.strip())
    )


def qa_category(item: Mapping[str, Any]) -> str:
    category = item.get("category")
    if isinstance(category, str) and category.strip():
        return category.strip()
    return "General"


def format_qa_content(item: Mapping[str, Any]) -> str:
    """Render a Q&A pair as embedding-friendly text."""
    return (
        f"PREGUNTA: {item['question'].strip()}\n"
        f"RESPUESTA: {item['answer'].strip()}\n"
        f"CATEGORÍA: {qa_category(item)}"
    )


# ═══════════════════════════════════════════════════════════════════════════════
# CHUNKING
# ═══════════════════════════════════════════════════════════════════════════════

class TextChunker:
    """
    Recursive character splitter.

    Tries separators in priority order (paragraph, line, sentence, clause,
    word) and only falls back to a hard character cut when no separator
    yields pieces under ``chunk_size``. Consecutive windows share up to
    ``chunk_overlap`` characters.
    """

    def __init__(
        self,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        separators: Optional[List[str]] = None,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.separators = separators or DEFAULT_SEPARATORS

    def split_text(self, text: str) -> List[str]:
        """Split text into overlapping windows."""
        if not text.strip():
            return []
        return self._split(text, self.separators)

    def _split(self, text: str, separators: List[str]) -> List[str]:
        separator = separators[-1]
        remaining: List[str] = []
        for i, sep in enumerate(separators):
            if sep == "":
                separator = sep
                break
            if sep in text:
                separator = sep
                remaining = separators[i + 1:]
                break

        pieces = text.split(separator) if separator else list(text)
        pieces = [p for p in pieces if p]

        chunks: List[str] = []
        small: List[str] = []
        for piece in pieces:
            if len(piece) <= self.chunk_size:
                small.append(piece)
                continue
            if small:
                chunks.extend(self._merge(small, separator))
                small = []
            if remaining:
                chunks.extend(self._split(piece, remaining))
            else:
                chunks.append(piece)

        if small:
            chunks.extend(self._merge(small, separator))
        return chunks

    def _merge(self, pieces: List[str], separator: str) -> List[str]:
        """Greedily pack pieces into windows, carrying an overlap tail."""
        sep_len = len(separator)
        merged: List[str] = []
        window: List[str] = []
        total = 0

        for piece in pieces:
            extra = sep_len if window else 0
            if total + len(piece) + extra > self.chunk_size and window:
                chunk = separator.join(window).strip()
                if chunk:
                    merged.append(chunk)
                # Drop from the front until the tail fits the overlap budget
                while window and (
                    total > self.chunk_overlap
                    or total + len(piece) + (sep_len if window else 0) > self.chunk_size
                ):
                    total -= len(window[0]) + (sep_len if len(window) > 1 else 0)
                    window.pop(0)
            window.append(piece)
            total += len(piece) + (sep_len if len(window) > 1 else 0)

        chunk = separator.join(window).strip()
        if chunk:
            merged.append(chunk)
        return merged
