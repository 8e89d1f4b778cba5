"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from nbassist.api import router as api_router
from nbassist.services.document_registry import shutdown_registry


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Stop refreshers and in-flight sessions of every open document
    await shutdown_registry()


app = FastAPI(
    title="nbassist",
    description="Context-aware AI cell editing for notebooks",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


# Include v1 API router
app.include_router(api_router, prefix="/v1", tags=["v1"])
