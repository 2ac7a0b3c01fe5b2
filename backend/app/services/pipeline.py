import logging

from app.core.config import settings
from app.schemas.outline import AnnotatedOutline
from app.services.evidence import attach_evidence, evidence_counts
from app.services.llm import LLMClient
from app.services.pdf_parser import parse_pdf_bytes

logger = logging.getLogger(__name__)


class PipelineError(Exception):
    def __init__(self, code: str, detail: str):
        super().__init__(detail)
        self.code = code
        self.detail = detail


class PipelineService:
    """ingestion -> structuring -> evidence attribution, for one uploaded PDF."""

    def __init__(self, llm: LLMClient | None = None):
        self.llm = llm or LLMClient()

    def run(self, file_bytes: bytes) -> AnnotatedOutline:
        try:
            # Step 1: ingest
            try:
                parsed = parse_pdf_bytes(file_bytes)
            except ValueError as exc:
                raise PipelineError("PARSE_FAILED", str(exc)) from exc
            if parsed.pages > settings.max_pages:
                raise PipelineError("DOC_TOO_LARGE", f"pages={parsed.pages}")
            logger.info(
                "Extracted %d chars from %d pages%s",
                len(parsed.text),
                parsed.pages,
                f" (truncated from {parsed.original_chars})" if parsed.truncated else "",
            )

            # Step 2: structure
            try:
                outline = self.llm.structure_outline(parsed.text)
            except ValueError as exc:
                raise PipelineError("LLM_API_ERROR", str(exc)) from exc
            logger.info(
                "Outline has %d modules, %d concepts",
                len(outline.modules),
                sum(len(m.concepts) for m in outline.modules),
            )

            # Step 3: evidence
            annotated = attach_evidence(parsed.text, outline)
            counts = evidence_counts(annotated)
            logger.info("Evidence attached: %d from pdf, %d from ai", counts["pdf"], counts["ai"])
            return annotated
        finally:
            self.llm.close()
