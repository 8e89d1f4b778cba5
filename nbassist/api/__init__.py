"""API router for v1 endpoints."""

from fastapi import APIRouter

from nbassist.api import assist, documents

router = APIRouter()

# Document lifecycle and embedding refresh
router.include_router(documents.router, tags=["documents"])

# AI edit sessions (SSE streaming)
router.include_router(assist.router, tags=["assist"])
