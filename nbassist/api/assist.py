"""AI edit session endpoints (Server-Sent Events)."""

import asyncio
import json
from typing import Any, AsyncGenerator, Tuple

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from nbassist.core.errors import ProviderUnavailable
from nbassist.core.logging import get_logger
from nbassist.services.document_registry import DocumentRegistry, OpenDocument, get_registry
from nbassist.services.session_controller import AssistRequest
from nbassist.services.stream_apply import StreamSession

logger = get_logger(__name__)

router = APIRouter()

TERMINAL_EVENTS = {"complete", "error", "cancelled"}


class Selection(BaseModel):
    """Selected range inside the cell, as (line, column) pairs."""

    start: Tuple[int, int]
    end: Tuple[int, int]


class AssistBody(BaseModel):
    """Request to edit a cell with AI."""

    cell_id: str
    instruction: str = ""
    fix_error: bool = False
    selection: Selection | None = None


class CancelBody(BaseModel):
    cell_id: str


class QueueSurface:
    """Diff surface that turns session notifications into SSE events."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    def _put(self, event_type: str, session: StreamSession, **fields: Any) -> None:
        self.queue.put_nowait(
            {
                "type": event_type,
                "session_id": session.session_id,
                "cell_id": session.target,
                **fields,
            }
        )

    def on_update(self, session: StreamSession) -> None:
        self._put("update", session, code=session.proposed_code)

    def on_complete(self, session: StreamSession) -> None:
        self._put(
            "complete",
            session,
            code=session.proposed_code,
            original_code=session.original_code,
        )

    def on_error(self, session: StreamSession, error: Exception) -> None:
        self._put("error", session, error=str(error), code=session.proposed_code)

    def on_cancelled(self, session: StreamSession) -> None:
        self._put("cancelled", session)


def _sse_event(data: dict) -> str:
    """Format a dict as an SSE data line."""
    return f"data: {json.dumps(data)}\n\n"


def _require_document(registry: DocumentRegistry, document_path: str) -> OpenDocument:
    document = registry.get(document_path)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not open")
    return document


@router.post("/documents/{document_path:path}/assist")
async def assist(
    document_path: str,
    body: AssistBody,
    registry: DocumentRegistry = Depends(get_registry),
):
    """
    Start an AI edit of a cell and stream the proposed code.

    A user instruction toggles: posting again while a session is active on the
    same cell removes it. ``fix_error`` always starts a fresh session from the
    cell's captured traceback.

    Returns:
        StreamingResponse of SSE events: update* → complete | error | cancelled
    """
    document = _require_document(registry, document_path)
    host = document.host
    controller = document.controller

    if host.cell_source(body.cell_id) is None:
        raise HTTPException(status_code=404, detail="Cell not found")

    if body.selection is not None:
        host.select(body.cell_id, body.selection.start, body.selection.end)

    surface = QueueSurface()
    try:
        if body.fix_error:
            session = await controller.fix_error(
                body.cell_id, surface, host.error_output(body.cell_id)
            )
        else:
            session = await controller.toggle(
                AssistRequest(target=body.cell_id, instruction=body.instruction), surface
            )
    except ProviderUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e)) from e

    if session is None:
        return JSONResponse(content={"status": "removed", "cell_id": body.cell_id})

    async def generate() -> AsyncGenerator[str, None]:
        try:
            yield _sse_event({"type": "session", "session_id": session.session_id})
            while True:
                event = await surface.queue.get()
                yield _sse_event(event)
                if event["type"] in TERMINAL_EVENTS:
                    break
        finally:
            # Client went away mid-stream
            controller.release(session)

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/documents/{document_path:path}/cancel")
async def cancel_session(
    document_path: str,
    body: CancelBody,
    registry: DocumentRegistry = Depends(get_registry),
) -> dict:
    """Cancel the active session on a cell."""
    document = _require_document(registry, document_path)
    cancelled = document.controller.cancel(body.cell_id)
    return {"cell_id": body.cell_id, "cancelled": cancelled}
