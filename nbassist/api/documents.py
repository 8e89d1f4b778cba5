"""Document lifecycle and embedding refresh endpoints."""

from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from nbassist.core.embedding_cache import stale_cells
from nbassist.core.logging import get_logger
from nbassist.core.schemas_cells import CellRecord
from nbassist.services.document_registry import DocumentRegistry, get_registry

logger = get_logger(__name__)

router = APIRouter()


class OpenDocumentRequest(BaseModel):
    """Current cells of a document, captured error outputs and kernel variables.

    ``variables`` maps each kernel variable name to a short description (type,
    shape, DataFrame columns). Omitting it keeps the variables already known.
    """

    cells: List[CellRecord] = []
    error_outputs: Dict[str, Any] = {}
    variables: Optional[Dict[str, str]] = None


@router.put("/documents/{document_path:path}")
async def open_document(
    document_path: str,
    request: OpenDocumentRequest,
    registry: DocumentRegistry = Depends(get_registry),
) -> dict:
    """Open a document, or replace the cells of an open one."""
    document = await registry.open(document_path, request.cells, request.variables)
    for cell_id, raw in request.error_outputs.items():
        document.host.set_error_output(cell_id, raw)

    snapshot = registry.cache.current_snapshot(document_path)
    return {
        "document_path": document_path,
        "cells": len(request.cells),
        "embedded": len(snapshot),
        "stale": stale_cells(snapshot, request.cells),
    }


@router.delete("/documents/{document_path:path}")
async def close_document(
    document_path: str,
    registry: DocumentRegistry = Depends(get_registry),
) -> dict:
    """Close a document, stopping its refresher and sessions."""
    if not await registry.close(document_path):
        raise HTTPException(status_code=404, detail="Document not open")
    return {"document_path": document_path, "closed": True}


@router.post("/documents/{document_path:path}/refresh")
async def refresh_embeddings(
    document_path: str,
    registry: DocumentRegistry = Depends(get_registry),
) -> dict:
    """Run an embedding refresh now and report what changed."""
    document = registry.get(document_path)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not open")

    outcome = await registry.cache.ensure_fresh(document_path, document.host.cells())
    return asdict(outcome)


@router.get("/documents/{document_path:path}")
async def document_status(
    document_path: str,
    registry: DocumentRegistry = Depends(get_registry),
) -> dict:
    """
    Report the state of an open document.

    Returns:
        Embedding coverage, cells with an active edit session and refresher stats
    """
    document = registry.get(document_path)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not open")

    cells = document.host.cells()
    snapshot = registry.cache.current_snapshot(document_path)
    return {
        "document_path": document_path,
        "cells": len(cells),
        "embedded": len(snapshot),
        "stale": stale_cells(snapshot, cells),
        "active_sessions": document.controller.active_targets(),
        "refresher": document.refresher.stats,
    }
