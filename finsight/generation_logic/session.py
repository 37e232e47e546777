"""Analysis session: owns the report, the source documents and the chat history.

A session handles one generation request at a time. Failed requests leave the
previous report and history exactly as they were.
"""

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from uuid import uuid4

from finsight.core.config import Settings
from finsight.core.config import settings as default_settings
from finsight.core.exceptions import NoReportError
from finsight.core.exceptions import SessionBusyError
from finsight.core.exceptions import SessionNotFoundError
from finsight.generation_logic.context_preparation import build_analysis_request
from finsight.generation_logic.context_preparation import language_name
from finsight.generation_logic.file_processing import prepare_documents
from finsight.models.document_models import NormalizedDocument
from finsight.models.document_models import RawDocument
from finsight.models.report_models import ChatTurn
from finsight.models.report_models import PatchResult
from finsight.models.report_models import Report
from finsight.services.llm import AnalysisInvoker
from finsight.services.patch_engine import PatchEngine
from finsight.services.patch_engine import apply_patch
from finsight.services.response_validator import parse_report
from finsight.services.schema_contract import ANALYSIS_CONTRACT

__all__ = ["AnalysisSession", "SessionState", "SessionStore"]

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    PATCHING = "patching"


class AnalysisSession:
    def __init__(
        self,
        invoker: AnalysisInvoker | None = None,
        patch_engine: PatchEngine | None = None,
        config: Settings | None = None,
        session_id: str | None = None,
    ) -> None:
        self.config = config or default_settings
        self.id = session_id or uuid4().hex
        self.invoker = invoker or AnalysisInvoker(config=self.config)
        self.patch_engine = patch_engine or PatchEngine(self.invoker, self.config)

        self.state = SessionState.IDLE
        self.language = self.config.default_language
        self.report: Report | None = None
        self.documents: list[NormalizedDocument] = []
        self._history: list[ChatTurn] = []
        self.last_used = time.time()

    @property
    def history(self) -> tuple[ChatTurn, ...]:
        return tuple(self._history)

    def touch(self) -> None:
        self.last_used = time.time()

    @contextmanager
    def _in_flight(self, state: SessionState) -> Iterator[None]:
        if self.state is not SessionState.IDLE:
            logger.warning("[%s] Rejected %s request: session is %s", self.id, state.value, self.state.value)
            raise SessionBusyError(f"A request is already in progress ({self.state.value}).")
        self.state = state
        try:
            yield
        finally:
            self.state = SessionState.IDLE
            self.touch()

    async def analyze(
        self,
        uploads: list[RawDocument],
        language: str | None = None,
        api_key: str | None = None,
    ) -> Report:
        """Run the full pipeline on ``uploads`` and replace the session report on success."""
        language = language or self.language
        language_name(language)
        request_id = str(uuid4())

        with self._in_flight(SessionState.ANALYZING):
            logger.info("[%s] Session %s: analysis of %d uploads (%s)", request_id, self.id, len(uploads), language)
            documents = await prepare_documents(uploads, request_id)
            request = build_analysis_request(documents, language, request_id, self.config)
            raw = await self.invoker.invoke(request, ANALYSIS_CONTRACT, api_key=api_key, request_id=request_id)
            report = parse_report(raw, request_id)

        self.report = report
        self.documents = documents
        self.language = language
        self._history = []
        logger.info("[%s] Session %s: report ready for '%s'", request_id, self.id, report.company_name)
        return report

    async def chat(self, instruction: str, api_key: str | None = None) -> PatchResult:
        """Answer or apply one conversational edit; the report changes only if the whole turn succeeds."""
        if self.report is None:
            raise NoReportError("No report to discuss yet: run an analysis first.")
        request_id = str(uuid4())

        with self._in_flight(SessionState.PATCHING):
            result = await self.patch_engine.request_patch(
                self.report,
                self._history,
                instruction,
                self.language,
                self.documents,
                api_key=api_key,
                request_id=request_id,
            )
            updated = apply_patch(self.report, result, request_id)

        self.report = updated
        self._history.append(ChatTurn(role="user", content=instruction))
        self._history.append(ChatTurn(role="assistant", content=result.answer))
        return result

    def reset(self) -> None:
        if self.state is not SessionState.IDLE:
            raise SessionBusyError(f"Cannot reset while a request is in progress ({self.state.value}).")
        self.report = None
        self.documents = []
        self._history = []
        logger.info("Session %s reset", self.id)


class SessionStore:
    """In-process registry of sessions; nothing is persisted.

    Sessions idle for longer than ``session_ttl`` seconds are evicted whenever
    the store is accessed. A session with a request in flight is never evicted.
    """

    def __init__(self, invoker: AnalysisInvoker | None = None, config: Settings | None = None) -> None:
        self.config = config or default_settings
        self.invoker = invoker or AnalysisInvoker(config=self.config)
        self._sessions: dict[str, AnalysisSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self) -> AnalysisSession:
        self.evict_expired()
        session = AnalysisSession(invoker=self.invoker, config=self.config)
        self._sessions[session.id] = session
        logger.info("Session %s created (%d live)", session.id, len(self._sessions))
        return session

    def get(self, session_id: str) -> AnalysisSession:
        self.evict_expired()
        try:
            session = self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(f"Session '{session_id}' not found.") from None
        session.touch()
        return session

    def delete(self, session_id: str) -> None:
        session = self.get(session_id)
        if session.state is not SessionState.IDLE:
            raise SessionBusyError(f"Cannot delete while a request is in progress ({session.state.value}).")
        del self._sessions[session_id]
        logger.info("Session %s deleted", session_id)

    def evict_expired(self, now: float | None = None) -> list[str]:
        """Drop idle sessions whose last use is older than the configured TTL."""
        now = time.time() if now is None else now
        expired = [
            sid
            for sid, session in self._sessions.items()
            if session.state is SessionState.IDLE and now - session.last_used > self.config.session_ttl
        ]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("Evicted %d idle sessions (ttl=%ss)", len(expired), self.config.session_ttl)
        return expired

    async def aclose(self) -> None:
        self._sessions.clear()
        await self.invoker.aclose()
