"""Handles upload limits, de-duplication and concurrent normalization.

The primary entry point is `prepare_documents`, used by the analysis session
before the context is assembled.
"""

import asyncio
import logging

from finsight.core.exceptions import FinSightError
from finsight.core.exceptions import UploadLimitError
from finsight.core.validation import MAX_FILE_SIZE
from finsight.core.validation import MAX_FILES
from finsight.core.validation import MAX_TOTAL_SIZE
from finsight.models.document_models import NormalizedDocument
from finsight.models.document_models import RawDocument
from finsight.services.extractor import normalize_document_async
from finsight.services.extractor import resolve_extension

__all__ = [
    "deduplicate_uploads",
    "prepare_documents",
]

logger = logging.getLogger(__name__)


def deduplicate_uploads(uploads: list[RawDocument], request_id: str = "-") -> list[RawDocument]:
    """Keep the first upload for each file name; later duplicates are dropped."""
    seen: set[str] = set()
    unique: list[RawDocument] = []
    for upload in uploads:
        if upload.filename in seen:
            logger.info("[%s] Dropping duplicate upload '%s'", request_id, upload.filename)
            continue
        seen.add(upload.filename)
        unique.append(upload)
    return unique


def _check_limits(uploads: list[RawDocument], request_id: str) -> None:
    if len(uploads) > MAX_FILES:
        logger.warning("[%s] Upload rejected: too many files (%d > %d)", request_id, len(uploads), MAX_FILES)
        raise UploadLimitError(f"At most {MAX_FILES} files can be processed at once.")

    total_size = 0
    for upload in uploads:
        size = len(upload.content)
        if size > MAX_FILE_SIZE:
            logger.warning("[%s] Rejected file exceeding size limit: %s (%d bytes)", request_id, upload.filename, size)
            raise UploadLimitError(
                f"File '{upload.filename}' is too large ({size // (1024 * 1024)}MB). Limit per file: {MAX_FILE_SIZE // (1024 * 1024)}MB"
            )
        total_size += size

    if total_size > MAX_TOTAL_SIZE:
        logger.warning("[%s] Total upload size exceeds limit: %d > %d bytes", request_id, total_size, MAX_TOTAL_SIZE)
        raise UploadLimitError(
            f"Total upload size ({total_size // (1024 * 1024)}MB) exceeds the {MAX_TOTAL_SIZE // (1024 * 1024)}MB limit."
        )


async def prepare_documents(uploads: list[RawDocument], request_id: str = "-") -> list[NormalizedDocument]:
    """Validate uploads, then normalize them concurrently, returning them in upload order."""
    unique = deduplicate_uploads(uploads, request_id)
    if not unique:
        raise UploadLimitError("No files were provided.")
    _check_limits(unique, request_id)

    # Reject unsupported types up front so no parsing starts for a doomed batch
    for upload in unique:
        resolve_extension(upload.filename, upload.content, upload.media_type)

    logger.info("[%s] Normalizing %d documents concurrently", request_id, len(unique))
    tasks = [normalize_document_async(u.filename, u.content, u.media_type, request_id) for u in unique]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    documents: list[NormalizedDocument] = []
    for upload, result in zip(unique, results, strict=True):
        if isinstance(result, FinSightError):
            logger.error("[%s] Normalization failed for '%s': %s", request_id, upload.filename, result)
            raise result
        if isinstance(result, BaseException):
            logger.error("[%s] Unexpected error normalizing '%s'", request_id, upload.filename, exc_info=result)
            raise result
        documents.append(result)

    logger.info(
        "[%s] Normalization complete: %s",
        request_id,
        ", ".join(f"{d.name} ({d.kind.value}, {len(d.payload)} chars)" for d in documents),
    )
    return documents
