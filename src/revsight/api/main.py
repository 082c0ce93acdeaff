from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from revsight.api.state import _services
from revsight.cli import _build_dependencies
from revsight.config import settings
from revsight.core.errors import RevsightError
from revsight.core.models import (
    Analysis,
    AnalysisSummary,
    ChangeSet,
    ItemIdentifier,
    ItemType,
    Resolution,
    SimilarityResult,
)

# Vectors stay server-side; responses carry the scores and findings only
_NO_EMBEDDINGS = {"file_results": {"__all__": {"embedding"}}}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown events for the API."""
    print("\n[Startup] Initializing GitHub client, oracle and store...")

    try:
        _services.update(_build_dependencies()._asdict())
        print(f"  -> Store: {settings.store_type} ({settings.db_path})")
        print("[Startup] API is ready to accept concurrent requests.")
    except Exception as e:
        print(f"[Startup] Failed to initialize services: {e}")
        raise

    yield

    print("\n[Shutdown] Cleaning up resources...")
    host = _services.get("host")
    if host is not None:
        await host.aclose()
    _services.clear()


app = FastAPI(
    title="revsight API",
    description="Async API for AI change-set analysis and similarity search over past findings.",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(RevsightError)
async def revsight_error_handler(request: Request, exc: RevsightError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "details": exc.details, "retryable": exc.retryable},
    )


def _service(name: str) -> Any:
    service = _services.get(name)
    if service is None:
        raise HTTPException(status_code=503, detail=f"Service '{name}' is not initialized.")
    return service


class AnalysisRequest(BaseModel):
    """Schema for a pull request analysis request."""

    owner: str = Field(..., min_length=1, description="Repository owner.")
    repo: str = Field(..., min_length=1, description="Repository name.")
    number: int = Field(..., ge=1, description="Pull request number.")


class ScanRequest(BaseModel):
    """Schema for a repository snapshot scan request."""

    owner: str = Field(..., min_length=1, description="Repository owner.")
    repo: str = Field(..., min_length=1, description="Repository name.")
    ref: str | None = Field(None, description="Branch or commit; the default branch if omitted.")


class ResolveRequest(BaseModel):
    """Schema for flipping the resolved flag of one issue or suggestion."""

    item_type: ItemType
    title: str
    file: str
    line: int | None = None
    description: str
    resolved: bool = True


class SimilarRequest(BaseModel):
    """Schema for a similarity search seeded by an analysed file."""

    analysis_id: str
    filename: str
    limit: int | None = Field(None, ge=1, le=100, description="Maximum number of results.")


class TextSearchRequest(BaseModel):
    """Schema for a free-text semantic search."""

    query: str = Field(..., description="Free text or code to search for.")
    limit: int | None = Field(None, ge=1, le=100, description="Maximum number of results.")


class SearchResponse(BaseModel):
    """Schema for returning ranked similarity results."""

    results: list[SimilarityResult]


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Basic health check endpoint."""
    if not _services:
        raise HTTPException(status_code=503, detail="Services initializing or failed")

    return {
        "status": "healthy",
        "store": settings.store_type,
        "analysis_model": settings.oracle.analysis_model,
        "embedder": settings.oracle.embedder,
    }


@app.post("/analyses", response_model=Analysis, response_model_exclude=_NO_EMBEDDINGS)
async def create_analysis(request: AnalysisRequest) -> Analysis:
    """Analyses a pull request, replacing any earlier analysis of it."""
    coordinator = _service("coordinator")
    return await coordinator.request_analysis(request.owner, request.repo, request.number)


@app.post("/scans", response_model=Analysis, response_model_exclude=_NO_EMBEDDINGS)
async def create_scan(request: ScanRequest) -> Analysis:
    """Analyses a repository snapshot."""
    coordinator = _service("coordinator")
    return await coordinator.request_scan(request.owner, request.repo, request.ref)


@app.get("/analyses/{analysis_id}", response_model=Analysis, response_model_exclude=_NO_EMBEDDINGS)
async def get_analysis(analysis_id: str) -> Analysis:
    """Returns an analysis with its current resolved flags."""
    return await _service("triage").view(analysis_id)


@app.get("/analyses/{analysis_id}/summary", response_model=AnalysisSummary)
async def get_analysis_summary(analysis_id: str) -> AnalysisSummary:
    """Regenerates the narrative summary of a stored analysis."""
    return await _service("coordinator").summarize_analysis(analysis_id)


@app.get("/change-sets/{change_set_id}", response_model=ChangeSet)
async def get_change_set(change_set_id: str) -> ChangeSet:
    """Returns the status and denormalized host metadata of a change-set."""
    return await _service("coordinator").get_change_set(change_set_id)


@app.patch("/analyses/{analysis_id}/items/resolve", response_model=Resolution)
async def resolve_item(analysis_id: str, request: ResolveRequest) -> Resolution:
    """Marks an issue or suggestion as resolved, or reopens it."""
    identifier = ItemIdentifier(
        title=request.title, file=request.file, line=request.line, description=request.description
    )
    return await _service("triage").set_resolved(
        analysis_id, request.item_type, identifier, request.resolved
    )


@app.post("/search/similar", response_model=SearchResponse)
async def search_similar(request: SimilarRequest) -> SearchResponse:
    """Finds stored files similar to one already analysed file."""
    results = await _service("search").find_similar(
        request.analysis_id, request.filename, request.limit
    )
    return SearchResponse(results=results)


@app.post("/search/text", response_model=SearchResponse)
async def search_text(request: TextSearchRequest) -> SearchResponse:
    """Embeds free text and ranks stored files against it."""
    results = await _service("search").search_text(request.query, request.limit)
    return SearchResponse(results=results)
