import re
from dataclasses import dataclass

import pymupdf

from app.core.config import settings


@dataclass
class ParsedDocument:
    pages: int
    text: str
    # length of the extracted text before truncation
    original_chars: int

    @property
    def truncated(self) -> bool:
        return self.original_chars > len(self.text)


def _normalize_text(text: str) -> str:
    text = text.replace("\u00a0", " ")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def truncate_text(text: str, limit: int) -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit]


def extract_pdf_text(data: bytes) -> tuple[int, str]:
    """Return (page count, full normalized text) of a PDF."""
    try:
        doc = pymupdf.open(stream=data, filetype="pdf")
    except Exception as exc:  # noqa: BLE001
        raise ValueError("PARSE_FAILED: invalid pdf") from exc

    try:
        pages = len(doc)
        if pages == 0:
            raise ValueError("PARSE_FAILED: empty pdf")

        page_texts: list[str] = []
        for page in doc:
            normalized = _normalize_text(page.get_text() or "")
            if normalized:
                page_texts.append(normalized)
    finally:
        doc.close()

    if not page_texts:
        raise ValueError("PARSE_FAILED: no extractable text")

    return pages, "\n".join(page_texts)


def parse_pdf_bytes(data: bytes, max_chars: int | None = None) -> ParsedDocument:
    pages, text = extract_pdf_text(data)
    limit = settings.max_text_chars if max_chars is None else max_chars
    return ParsedDocument(pages=pages, text=truncate_text(text, limit), original_chars=len(text))
