"""Evidence attribution: link each concept back to a verbatim quote in the PDF text.

Everything here is pure and synchronous. The search is first-match, not
ranked: the whole term is tried before any of its tokens, and tokens are tried
in the order they appear in the term.
"""

import re
from dataclasses import dataclass
from typing import Any

from app.schemas.outline import (
    AnnotatedOutline,
    ConceptCandidate,
    ConceptOut,
    DefinitionOut,
    ModuleOut,
    SourceLocation,
    StructuredOutline,
)

MIN_TERM_LENGTH = 2
MAX_QUOTE_CHARS = 600
# (chars before match start, chars after match end)
PRIMARY_WINDOW = (240, 260)
TIGHT_WINDOW = (180, 220)

_TOKEN_SEPARATORS_RE = re.compile(r"[\s,，、;；:：()（）\-‐‑–—/]+")


@dataclass(frozen=True)
class TextAnchored:
    quote: str
    start: int
    end: int


@dataclass(frozen=True)
class AiAuthored:
    text: str


EvidenceRecord = TextAnchored | AiAuthored


def normalize_term(value: Any) -> str:
    """Trimmed string, or "" for anything that is not a non-blank string."""
    if not isinstance(value, str):
        return ""
    return value.strip()


def split_term_tokens(term: str) -> list[str]:
    """Split a compound term into searchable parts, keeping their original order."""
    return [t for t in _TOKEN_SEPARATORS_RE.split(term) if len(t) >= MIN_TERM_LENGTH]


class EvidenceIndex:
    """Case-insensitive lookup over one document, built once per request."""

    def __init__(self, full_text: Any):
        self.text = full_text if isinstance(full_text, str) else ""
        lowered = self.text.lower()
        # Offsets from the lowered copy are only valid when lowering kept every char one-to-one.
        self._lowered = lowered if len(lowered) == len(self.text) else None

    def find(self, term: str) -> tuple[int, int] | None:
        """Return the [start, end) span of the first case-insensitive occurrence of term."""
        if self._lowered is not None:
            needle = term.lower()
            if len(needle) == len(term):
                idx = self._lowered.find(needle)
                if idx == -1:
                    return None
                return idx, idx + len(needle)
        m = re.search(re.escape(term), self.text, re.IGNORECASE)
        if not m:
            return None
        return m.start(), m.end()


def _window(text: str, match_start: int, match_end: int, before: int, after: int) -> tuple[int, int, str]:
    start = max(0, match_start - before)
    end = min(len(text), match_end + after)

    newline = text.rfind("\n", start, match_start)
    if newline != -1:
        start = newline + 1
    newline = text.find("\n", match_end, end)
    if newline != -1:
        end = newline

    return start, end, text[start:end].strip()


def _cap_quote(text: str, start: int, end: int, match_start: int, match_end: int) -> str:
    """Cut a quote to MAX_QUOTE_CHARS; slide the cut forward only as far as needed to keep the match."""
    raw = text[start:end]
    lead = len(raw) - len(raw.lstrip())
    quote = raw.strip()
    match_start_in_quote = match_start - start - lead
    match_end_in_quote = match_end - start - lead
    offset = max(0, match_end_in_quote - MAX_QUOTE_CHARS)
    offset = min(offset, match_start_in_quote, len(quote) - MAX_QUOTE_CHARS)
    return quote[offset : offset + MAX_QUOTE_CHARS]


def _anchor_at(index: EvidenceIndex, term: str) -> TextAnchored | None:
    span = index.find(term)
    if span is None:
        return None

    start, end, quote = _window(index.text, span[0], span[1], *PRIMARY_WINDOW)
    if len(quote) > MAX_QUOTE_CHARS:
        start, end, quote = _window(index.text, span[0], span[1], *TIGHT_WINDOW)
        if len(quote) > MAX_QUOTE_CHARS:
            quote = _cap_quote(index.text, start, end, span[0], span[1])

    if not quote:
        return None
    return TextAnchored(quote=quote, start=start, end=end)


def find_evidence_anchor(full_text: Any, term: Any, index: EvidenceIndex | None = None) -> TextAnchored | None:
    """Find a verbatim quote in full_text that evidences term.

    The whole term is searched first. Only when it does not occur is the term
    split into tokens, each searched in order; the first token with a match
    wins. Returns None when nothing anchors.
    """
    term = normalize_term(term)
    if len(term) < MIN_TERM_LENGTH:
        return None
    if index is None:
        index = EvidenceIndex(full_text)

    anchor = _anchor_at(index, term)
    if anchor is not None:
        return anchor

    for token in split_term_tokens(term):
        if token == term:
            continue
        anchor = _anchor_at(index, token)
        if anchor is not None:
            return anchor
    return None


def to_definition(record: EvidenceRecord) -> DefinitionOut:
    if isinstance(record, TextAnchored):
        return DefinitionOut(
            text=record.quote,
            source="pdf",
            source_quote=record.quote,
            source_location=SourceLocation(start=record.start, end=record.end),
        )
    return DefinitionOut(text=record.text, source="ai")


def attribute_concept(index: EvidenceIndex, concept: ConceptCandidate) -> ConceptOut:
    name = normalize_term(concept.name)
    description = normalize_term(concept.description)

    record: EvidenceRecord | None = None
    if name:
        record = find_evidence_anchor(index.text, name, index=index)
    if record is None:
        record = AiAuthored(text=description)

    return ConceptOut(name=name, description=description, definition=to_definition(record))


def attach_evidence(full_text: Any, outline: StructuredOutline) -> AnnotatedOutline:
    """Attach a definition to every concept; module and concept order are preserved."""
    index = EvidenceIndex(full_text)
    return AnnotatedOutline(
        course_name=outline.course_name,
        lecture_title=outline.lecture_title,
        modules=[
            ModuleOut(
                title=module.title,
                concepts=[attribute_concept(index, c) for c in module.concepts],
            )
            for module in outline.modules
        ],
    )


def evidence_counts(outline: AnnotatedOutline) -> dict[str, int]:
    counts = {"pdf": 0, "ai": 0}
    for module in outline.modules:
        for concept in module.concepts:
            counts[concept.definition.source] += 1
    return counts
