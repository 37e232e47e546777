import logging

from finsight.core.config import Settings
from finsight.core.config import settings as default_settings
from finsight.core.exceptions import EmptyDocumentError
from finsight.models.document_models import LANGUAGE_NAMES
from finsight.models.document_models import DocumentKind
from finsight.models.document_models import GenerationRequest
from finsight.models.document_models import NormalizedDocument
from finsight.services.llm import render_prompt

__all__ = [
    "RADAR_DIMENSIONS",
    "TRUNCATION_MARKER",
    "build_analysis_request",
    "document_char_cap",
    "language_name",
    "prepare_attachments",
    "truncate_payload",
]

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n[... DATA TRUNCATED: document exceeds the context size limit ...]"

RADAR_DIMENSIONS = ("Profitability", "Liquidity", "Solvency", "Efficiency", "Growth")


def language_name(language: str) -> str:
    try:
        return LANGUAGE_NAMES[language]
    except KeyError:
        raise ValueError(f"Unsupported language '{language}'. Choose one of: {', '.join(LANGUAGE_NAMES)}") from None


def document_char_cap(document_count: int, config: Settings | None = None) -> int:
    """Single-document requests keep the larger legacy cap; otherwise the cap applies per document."""
    config = config or default_settings
    return config.single_document_char_cap if document_count == 1 else config.multi_document_char_cap


def truncate_payload(payload: str, cap: int) -> str:
    """Cut ``payload`` at ``cap`` characters and append the truncation marker once."""
    if len(payload) <= cap:
        return payload
    return payload[:cap] + TRUNCATION_MARKER


def prepare_attachments(
    documents: list[NormalizedDocument],
    request_id: str = "-",
    config: Settings | None = None,
) -> tuple[NormalizedDocument, ...]:
    """Apply the size cap to tabular payloads; opaque payloads are attached as-is."""
    cap = document_char_cap(len(documents), config)
    prepared: list[NormalizedDocument] = []
    for doc in documents:
        if doc.kind is DocumentKind.TABULAR and len(doc.payload) > cap:
            logger.warning("[%s] CONTEXT: truncating '%s' (%d > %d chars)", request_id, doc.name, len(doc.payload), cap)
            doc = doc.model_copy(update={"payload": truncate_payload(doc.payload, cap)})
        prepared.append(doc)
    return tuple(prepared)


def build_analysis_request(
    documents: list[NormalizedDocument],
    language: str,
    request_id: str = "-",
    config: Settings | None = None,
) -> GenerationRequest:
    """Assemble the initial analysis request for ``documents`` in upload order."""
    if not documents:
        raise EmptyDocumentError("No documents to analyze.")

    target_language = language_name(language)
    instructions = render_prompt(
        "analysis_prompt.jinja2",
        target_language=target_language,
        document_names=[d.name for d in documents],
        multi_document=len(documents) > 1,
        has_tabular=any(d.kind is DocumentKind.TABULAR for d in documents),
        radar_dimensions=RADAR_DIMENSIONS,
    )
    attachments = prepare_attachments(documents, request_id, config)
    logger.info(
        "[%s] CONTEXT: analysis request assembled (%s, %d attachments, %d instruction chars)",
        request_id,
        language,
        len(attachments),
        len(instructions),
    )
    return GenerationRequest(instructions=instructions, language=language, attachments=attachments)
