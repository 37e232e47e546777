import logging
from typing import Any

from fastapi import APIRouter
from fastapi import Depends
from fastapi import File
from fastapi import Form
from fastapi import Header
from fastapi import Request
from fastapi import UploadFile
from pydantic import BaseModel
from pydantic import Field as PydanticField

from finsight.generation_logic.session import AnalysisSession
from finsight.generation_logic.session import SessionStore
from finsight.models.document_models import Language
from finsight.models.document_models import RawDocument
from finsight.models.report_models import ChatTurn

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_session(session_id: str, store: SessionStore = Depends(get_store)) -> AnalysisSession:
    return store.get(session_id)


class ChatPayload(BaseModel):
    instruction: str = PydanticField(..., min_length=1, description="The user's question or edit request.")


def _session_view(session: AnalysisSession) -> dict[str, Any]:
    return {
        "id": session.id,
        "state": session.state.value,
        "language": session.language,
        "documents": [{"name": d.name, "kind": d.kind.value} for d in session.documents],
        "report": session.report.model_dump(by_alias=True, exclude_none=True) if session.report else None,
        "history": [_turn_view(t) for t in session.history],
    }


def _turn_view(turn: ChatTurn) -> dict[str, Any]:
    return {"role": turn.role, "content": turn.content, "timestamp": turn.timestamp.isoformat()}


@router.post("/sessions", status_code=201)
async def create_session(store: SessionStore = Depends(get_store)) -> dict[str, Any]:
    session = store.create()
    return _session_view(session)


@router.get("/sessions/{session_id}")
async def read_session(session: AnalysisSession = Depends(get_session)) -> dict[str, Any]:
    return _session_view(session)


@router.post("/sessions/{session_id}/analyze")
async def analyze(
    files: list[UploadFile] = File(...),
    language: Language | None = Form(None),
    x_llm_api_key: str | None = Header(default=None),
    session: AnalysisSession = Depends(get_session),
) -> dict[str, Any]:
    """Normalize the uploaded files, run the analysis and return the report.

    An optional `X-LLM-Api-Key` header takes precedence over server-side keys.
    """
    logger.info("Session %s: /analyze called with %d files", session.id, len(files))
    uploads = [
        RawDocument(filename=f.filename or "unknown_file", content=await f.read(), media_type=f.content_type)
        for f in files
    ]
    report = await session.analyze(uploads, language=language, api_key=x_llm_api_key)
    return report.model_dump(by_alias=True, exclude_none=True)


@router.post("/sessions/{session_id}/chat")
async def chat(
    payload: ChatPayload,
    x_llm_api_key: str | None = Header(default=None),
    session: AnalysisSession = Depends(get_session),
) -> dict[str, Any]:
    result = await session.chat(payload.instruction, api_key=x_llm_api_key)
    changed = result.changed_fields()
    return {
        "answer": result.answer,
        "updated": bool(changed),
        "updatedFields": sorted(changed),
        "report": session.report.model_dump(by_alias=True, exclude_none=True),
    }


@router.post("/sessions/{session_id}/reset")
async def reset(session: AnalysisSession = Depends(get_session)) -> dict[str, Any]:
    session.reset()
    return _session_view(session)


@router.delete("/sessions/{session_id}", status_code=204)
async def delete_session(session_id: str, store: SessionStore = Depends(get_store)) -> None:
    """Drop the session and everything it holds (report, documents, history)."""
    store.delete(session_id)
