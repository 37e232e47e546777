import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from finsight.core.exceptions import MalformedResponseError
from finsight.models.report_models import PatchResult
from finsight.models.report_models import Report
from finsight.services.schema_contract import ANALYSIS_CONTRACT
from finsight.services.schema_contract import PATCH_CONTRACT
from finsight.services.schema_contract import SchemaContract

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.DOTALL)


def extract_json(text: str, request_id: str = "-") -> Any:
    """Parse JSON from generated text, tolerating markdown fences and surrounding prose."""
    logger.debug("[%s] Attempting to parse JSON response, length: %d", request_id, len(text))

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        logger.warning("[%s] Initial JSON parse failed, attempting extraction strategies...", request_id)

    # Strategy 1: Markdown Code Fence Extraction
    match = _FENCE_RE.search(text)
    if match:
        try:
            result = json.loads(match.group(1))
            logger.info("[%s] Parsed JSON from markdown code fence.", request_id)
            return result
        except json.JSONDecodeError:
            logger.warning("[%s] Failed to parse JSON from fenced block, trying next strategy...", request_id)

    # Strategy 2: raw_decode from the first object marker, then from the first array marker
    starts = [pos for pos in (text.find("{"), text.find("[")) if pos != -1]
    decoder = json.JSONDecoder()
    last_error: json.JSONDecodeError | None = None
    for start in starts:
        try:
            obj, _ = decoder.raw_decode(text, start)
            logger.info("[%s] Parsed JSON using raw_decode at offset %d.", request_id, start)
            return obj
        except json.JSONDecodeError as e:
            last_error = e

    logger.error("[%s] All strategies to parse JSON failed: %s", request_id, last_error)
    raise MalformedResponseError("The analysis service returned a response in an unexpected format.") from last_error


def validate_against(contract: SchemaContract, raw: str, request_id: str = "-") -> Any:
    """Parse ``raw`` and validate it against ``contract``.

    The raw text goes to the log only; exception messages never include it.

    Raises:
        MalformedResponseError: on parse failure, a non-object root, a missing
            mandatory field or a type violation.
    """
    try:
        data = extract_json(raw, request_id)
    except MalformedResponseError:
        logger.error("[%s] Unparseable %s response (%d chars)", request_id, contract.qualified_name, len(raw))
        logger.debug("[%s] Raw response: %s", request_id, raw)
        raise

    if not isinstance(data, dict):
        logger.error("[%s] %s response root is %s, expected object", request_id, contract.qualified_name, type(data).__name__)
        logger.debug("[%s] Raw response: %s", request_id, raw)
        raise MalformedResponseError("The analysis service returned a response in an unexpected format.")

    missing = [name for name in contract.required_fields() if name not in data]
    if missing:
        logger.error("[%s] %s response missing mandatory fields: %s", request_id, contract.qualified_name, missing)
        logger.debug("[%s] Raw response: %s", request_id, raw)
        raise MalformedResponseError(f"The generated report is incomplete (missing: {', '.join(missing)}).")

    try:
        return contract.validate(data)
    except ValidationError as e:
        logger.error(
            "[%s] %s response failed validation with %d errors: %s",
            request_id,
            contract.qualified_name,
            e.error_count(),
            e.errors(include_input=False),
        )
        logger.debug("[%s] Raw response: %s", request_id, raw)
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise MalformedResponseError(f"The generated content does not match the expected structure ({', '.join(fields)}).") from e


def parse_report(raw: str, request_id: str = "-") -> Report:
    return validate_against(ANALYSIS_CONTRACT, raw, request_id)


def parse_patch_result(raw: str, request_id: str = "-") -> PatchResult:
    return validate_against(PATCH_CONTRACT, raw, request_id)
