from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Generator

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from cryptoprospect import services
from cryptoprospect.config import get_settings
from cryptoprospect.db import get_session, init_db
from cryptoprospect.drafter import LLMCallError, LLMClient, generate_deliverable_spec, generate_email_draft
from cryptoprospect.errors import ConfigError
from cryptoprospect.models import PIPELINE_STATUSES, Prospect
from cryptoprospect.schemas import (
    DeliverableSpec,
    DraftRequest,
    EmailDraft,
    PipelineEntryOut,
    PipelineUpdate,
    ProspectDetail,
    ProspectOut,
    StatsOut,
)
from cryptoprospect.store import (
    get_pipeline_entry,
    get_prospect,
    read_pipeline,
    read_prospects,
    upsert_pipeline_entry,
)

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="CryptoProspect",
    version="0.1.0",
    description=(
        "Lead-generation API for mid-size DeFi protocols. "
        "Browse scored prospects, track outreach, export, and draft outreach with an LLM. "
        "All endpoints return JSON unless noted. No authentication required."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Prospects", "description": "Browse scored DeFi protocols."},
        {"name": "Pipeline", "description": "Outreach tracking per prospect."},
        {"name": "Export", "description": "CSV and JSON exports."},
        {"name": "Stats", "description": "Aggregate statistics and breakdowns."},
        {"name": "Drafts", "description": "LLM-drafted emails and deliverable specs. Requires an LLM API key."},
    ],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _prospect_or_404(session: Session, prospect_id: str) -> Prospect:
    prospect = get_prospect(session, prospect_id)
    if prospect is None:
        raise HTTPException(404, "Prospect not found")
    return prospect


def _draft_target(session: Session, body: DraftRequest) -> Prospect:
    if not body.prospect_id:
        raise HTTPException(400, "prospect_id is required")
    return _prospect_or_404(session, body.prospect_id)


def _llm_client() -> LLMClient:
    settings = get_settings()
    if not settings.llm_configured():
        raise HTTPException(503, f"LLM API key not configured for provider {settings.llm_provider!r}")
    try:
        return LLMClient(settings)
    except ConfigError as exc:
        raise HTTPException(503, str(exc)) from exc


# ---------------------------------------------------------------------------
# Routes: Prospects
# ---------------------------------------------------------------------------


@app.get("/api/prospects", response_model=list[ProspectOut],
         tags=["Prospects"], summary="List prospects, highest pain score first")
async def list_prospects(
    min_score: float | None = Query(None, description="Minimum pain score"),
    category: str | None = Query(None, description="Exact category, case-insensitive"),
    limit: int | None = Query(None, description="Maximum results; ignored unless positive"),
    session: Session = Depends(db_session),
):
    items = [services.prospect_summary(p) for p in read_prospects(session)]
    return services.filter_prospects(items, min_score=min_score, category=category, limit=limit)


@app.get("/api/prospects/{prospect_id}", response_model=ProspectDetail,
         tags=["Prospects"], summary="Get one prospect with its pipeline entry")
async def get_prospect_detail(prospect_id: str, session: Session = Depends(db_session)):
    prospect = _prospect_or_404(session, prospect_id)
    entry = get_pipeline_entry(session, prospect_id)
    return {
        "prospect": services.prospect_summary(prospect),
        "pipeline_entry": services.pipeline_summary(entry) if entry else None,
    }


# ---------------------------------------------------------------------------
# Routes: Pipeline
# ---------------------------------------------------------------------------


@app.get("/api/pipeline", response_model=list[PipelineEntryOut],
         tags=["Pipeline"], summary="List pipeline entries, optionally by status")
async def list_pipeline(
    status: str | None = Query(None, description="One of: " + ", ".join(PIPELINE_STATUSES)),
    session: Session = Depends(db_session),
):
    if status not in PIPELINE_STATUSES:
        status = None
    return [services.pipeline_summary(e) for e in read_pipeline(session, status)]


@app.post("/api/pipeline", response_model=PipelineEntryOut,
          tags=["Pipeline"], summary="Create or update a pipeline entry (null fields ignored)")
async def update_pipeline(body: PipelineUpdate, session: Session = Depends(db_session)):
    if not body.prospect_id:
        raise HTTPException(400, "prospect_id is required")
    _prospect_or_404(session, body.prospect_id)
    entry = upsert_pipeline_entry(session, body.prospect_id, body.model_dump(exclude={"prospect_id"}))
    session.commit()
    return services.pipeline_summary(entry)


# ---------------------------------------------------------------------------
# Routes: Export & Stats
# ---------------------------------------------------------------------------


@app.get("/api/export/prospects", tags=["Export"], summary="Export all prospects as CSV or JSON")
async def export_prospects(
    format: str = Query("json", description="csv or json"),
    session: Session = Depends(db_session),
):
    prospects = read_prospects(session)
    if format == "csv":
        filename = f"prospects-{date.today().isoformat()}.csv"
        return Response(
            content=services.prospects_to_csv(prospects),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    return [services.prospect_summary(p) for p in prospects]


@app.get("/api/stats", response_model=StatsOut, tags=["Stats"], summary="Aggregate prospect and pipeline stats")
async def get_stats(session: Session = Depends(db_session)):
    return services.compute_stats(session)


# ---------------------------------------------------------------------------
# Routes: Drafts
# ---------------------------------------------------------------------------


@app.post("/api/drafts/email", response_model=EmailDraft,
          tags=["Drafts"], summary="Draft a cold outreach email for a prospect")
async def draft_email(body: DraftRequest, session: Session = Depends(db_session)):
    prospect = _draft_target(session, body)
    client = _llm_client()
    try:
        return await generate_email_draft(prospect, client)
    except LLMCallError as exc:
        log.error("Email draft failed for %s: %s", prospect.id, exc)
        raise HTTPException(500, f"Failed to generate email draft: {exc}") from exc


@app.post("/api/drafts/deliverable-spec", response_model=DeliverableSpec,
          tags=["Drafts"], summary="Draft a deliverable spec and proof-of-work paragraph")
async def draft_deliverable_spec(body: DraftRequest, session: Session = Depends(db_session)):
    prospect = _draft_target(session, body)
    title = services.resolve_deliverable_title(prospect, body.deliverable_id, body.deliverable_title)
    client = _llm_client()
    try:
        return await generate_deliverable_spec(prospect, title, client)
    except LLMCallError as exc:
        log.error("Deliverable spec failed for %s: %s", prospect.id, exc)
        raise HTTPException(500, f"Failed to generate deliverable spec: {exc}") from exc


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("cryptoprospect.app:app", host="127.0.0.1", port=8002)


if __name__ == "__main__":
    main()
