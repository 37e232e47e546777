import json
import logging
from collections.abc import Sequence
from uuid import uuid4

from pydantic import ValidationError

from finsight.core.config import Settings
from finsight.core.config import settings as default_settings
from finsight.core.exceptions import MalformedResponseError
from finsight.generation_logic.context_preparation import language_name
from finsight.generation_logic.context_preparation import prepare_attachments
from finsight.models.document_models import GenerationRequest
from finsight.models.document_models import NormalizedDocument
from finsight.models.report_models import ChatTurn
from finsight.models.report_models import PatchResult
from finsight.models.report_models import Report
from finsight.services.llm import AnalysisInvoker
from finsight.services.llm import render_prompt
from finsight.services.response_validator import parse_patch_result
from finsight.services.schema_contract import ANALYSIS_CONTRACT
from finsight.services.schema_contract import CHART_CONTRACT
from finsight.services.schema_contract import PATCH_CONTRACT

logger = logging.getLogger(__name__)

REPORT_TRUNCATION_MARKER = "\n...[report truncated]"


def serialize_report(report: Report, budget: int) -> str:
    """Report as JSON, cut at ``budget`` characters."""
    text = report.model_dump_json(by_alias=True, exclude_none=True)
    if len(text) <= budget:
        return text
    return text[:budget] + REPORT_TRUNCATION_MARKER


def apply_patch(report: Report, patch: PatchResult, request_id: str = "-") -> Report:
    """Overwrite each top-level field present in the patch; everything else is kept.

    Lists are replaced wholesale, never appended to. The merged report is
    validated as a whole and returned as a new object, so ``report`` is left
    untouched when validation fails.

    Raises:
        MalformedResponseError: if the merged report violates the schema contract.
    """
    changes = patch.changed_fields()
    if not changes:
        return report

    merged = {**report.model_dump(by_alias=True), **changes}
    try:
        updated = Report.model_validate(merged)
    except ValidationError as e:
        logger.error("[%s] Patch rejected, merged report is invalid: %s", request_id, e.errors(include_input=False))
        raise MalformedResponseError("The requested change would produce an invalid report.") from e

    logger.info("[%s] Patch applied to fields: %s", request_id, ", ".join(changes))
    return updated


class PatchEngine:
    """Builds conversational edit requests and merges their results into a report."""

    def __init__(self, invoker: AnalysisInvoker, config: Settings | None = None) -> None:
        self.invoker = invoker
        self.config = config or default_settings

    def build_patch_request(
        self,
        report: Report,
        history: Sequence[ChatTurn],
        instruction: str,
        language: str,
        documents: Sequence[NormalizedDocument] = (),
        request_id: str = "-",
    ) -> GenerationRequest:
        recent = list(history)[-self.config.chat_history_turns :] if self.config.chat_history_turns > 0 else []
        instructions = render_prompt(
            "chat_prompt.jinja2",
            target_language=language_name(language),
            report_json=serialize_report(report, self.config.chat_report_context_chars),
            history=recent,
            instruction=instruction,
            report_fields=ANALYSIS_CONTRACT.field_names(),
            chart_schema=json.dumps(CHART_CONTRACT.json_schema(), ensure_ascii=False),
            has_documents=bool(documents),
        )
        attachments = prepare_attachments(list(documents), request_id, self.config)
        return GenerationRequest(instructions=instructions, language=language, attachments=attachments)

    async def request_patch(
        self,
        report: Report,
        history: Sequence[ChatTurn],
        instruction: str,
        language: str,
        documents: Sequence[NormalizedDocument] = (),
        api_key: str | None = None,
        request_id: str | None = None,
    ) -> PatchResult:
        """Ask the generation service to answer or edit; returns the validated PatchResult."""
        request_id = request_id or str(uuid4())
        logger.info("[%s] Patch request: %d history turns, instruction %d chars", request_id, len(history), len(instruction))
        request = self.build_patch_request(report, history, instruction, language, documents, request_id)
        raw = await self.invoker.invoke(request, PATCH_CONTRACT, api_key=api_key, request_id=request_id)
        result = parse_patch_result(raw, request_id)
        logger.info(
            "[%s] Patch response: %s",
            request_id,
            f"updates {sorted(result.changed_fields())}" if result.updated_fields is not None else "answer only",
        )
        return result
