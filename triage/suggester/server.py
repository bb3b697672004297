"""
Review Server

FastAPI surface for the ingestion collaborator and for human review.

Endpoints:
- GET /health: Health check
- GET /projects: Configured projects
- GET /projects/{project}/stats: Counts and run bookkeeping
- POST /projects/{project}/issues: Ingest issue payloads
- POST /projects/{project}/suggestions/run: Run a suggestion pass
- GET /projects/{project}/suggestions: Pending suggestions
- GET /projects/{project}/suggestions/{issue_id}: One pending suggestion
- POST /projects/{project}/suggestions/{issue_id}/check: Mark as checked
- GET /projects/{project}/checked/{issue_id}: Checked record

Projects are addressed by configured name; an unknown name is a 404 that
lists the available projects.
"""

import logging
import threading
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from ..common.config import (
    ProjectConfigError,
    TriageConfig,
    ensure_directories,
    load_config,
    resolve_project,
)
from ..common.llm_client import LLMClient
from ..common.schemas import Disposition
from ..store.backend import JsonFileBackend, KeyValueBackend
from .pipeline import SuggestionPipeline

logger = logging.getLogger("triage.suggester.server")


# Global state
config: Optional[TriageConfig] = None
llm_client: Optional[LLMClient] = None
backend: Optional[KeyValueBackend] = None

# Held by every endpoint that writes state (sync endpoints run in a threadpool)
_state_lock = threading.Lock()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize components on startup"""
    global config, llm_client, backend

    logger.info("Starting up...")

    config = load_config()
    ensure_directories(config)
    logger.info("Loaded config (%d projects, state: %s)", len(config.projects), config.state_path)

    if config.semantic.enabled:
        llm_client = LLMClient.from_config(config)
        if llm_client.is_available:
            logger.info("Semantic checks ready (%s/%s)", llm_client.provider, llm_client.model)
        else:
            logger.warning("Semantic backend unavailable (rules only)")
    else:
        llm_client = None
        logger.info("Semantic checks disabled (rules only)")

    backend = JsonFileBackend(config.state_path)

    yield

    logger.info("Shutting down...")


app = FastAPI(
    title="Issue Triage",
    description="Issue queue hygiene suggestions",
    version="0.1.0",
    lifespan=lifespan,
)


# =============================================================================
# Request Models
# =============================================================================

class IngestRequest(BaseModel):
    """Issue payloads pushed by the ingestion collaborator"""
    issues: List[Dict[str, Any]] = Field(default_factory=list)


class RunRequest(BaseModel):
    """Suggestion pass options"""
    full_rescan: bool = False
    issue_id: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1)


class CheckSubmission(BaseModel):
    """Human disposition of a suggestion"""
    action_taken: str = "marked_checked"
    reviewer: Optional[str] = None
    notes: Optional[str] = None


# =============================================================================
# Helpers
# =============================================================================

def _pipeline(project_name: str) -> SuggestionPipeline:
    if config is None or backend is None:
        raise HTTPException(status_code=503, detail="Server not initialized")

    try:
        project = resolve_project(config, project_name)
    except ProjectConfigError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return SuggestionPipeline.from_config(config, project, llm_client=llm_client, backend=backend)


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "triage",
        "initialized": backend is not None,
        "projects": len(config.projects) if config else 0,
        "semantic_available": llm_client.is_available if llm_client else False,
    }


@app.get("/projects")
async def list_projects():
    if config is None:
        raise HTTPException(status_code=503, detail="Server not initialized")
    return {
        "projects": [
            {"name": name, "id": project_id}
            for name, project_id in sorted(config.projects.items())
        ]
    }


@app.get("/projects/{project}/stats")
def get_stats(project: str):
    """Snapshot and suggestion counts plus run bookkeeping"""
    pipeline = _pipeline(project)
    return {
        "project": project,
        "snapshots": pipeline.snapshots.count(),
        "suggestions": pipeline.lifecycle.get_stats(),
        "run_state": pipeline.run_state.load().model_dump(mode="json"),
    }


@app.post("/projects/{project}/issues")
def ingest_issues(project: str, request: IngestRequest):
    """Store snapshots for the pushed issue payloads"""
    pipeline = _pipeline(project)
    with _state_lock:
        summary = pipeline.ingest_payloads(request.issues)
    return {"project": project, **summary.to_dict()}


@app.post("/projects/{project}/suggestions/run")
def run_suggestions(project: str, request: Optional[RunRequest] = None):
    """Evaluate changed issues and create pending suggestions"""
    request = request or RunRequest()
    pipeline = _pipeline(project)

    with _state_lock:
        if request.issue_id is not None and pipeline.snapshots.get(request.issue_id) is None:
            raise HTTPException(status_code=404, detail=f"Issue {request.issue_id} has no snapshot")

        summary = pipeline.give_suggestions(
            full_rescan=request.full_rescan,
            issue_id=request.issue_id,
            limit=request.limit,
        )
    return {"project": project, **summary.to_dict()}


@app.get("/projects/{project}/suggestions")
def get_suggestions(project: str):
    """Get pending suggestions, most recent first"""
    pipeline = _pipeline(project)
    pending = sorted(
        pipeline.lifecycle.list_pending().values(),
        key=lambda s: s.created_at,
        reverse=True,
    )
    return {
        "pending_count": len(pending),
        "items": [
            {
                "issue_id": s.issue_id,
                "title": s.issue_title,
                "url": s.issue_url,
                "problem_type": s.problem_type.value,
                "reason": s.reason,
                "current_status": s.current_status_name,
                "suggested_status": s.suggested_status_name,
                "ai_generated": s.ai_generated,
                "created_at": s.created_at,
            }
            for s in pending
        ],
    }


@app.get("/projects/{project}/suggestions/{issue_id}")
def get_suggestion(project: str, issue_id: str):
    """Get one pending suggestion"""
    pipeline = _pipeline(project)
    suggestion = pipeline.lifecycle.get_pending(issue_id)
    if suggestion is None:
        raise HTTPException(status_code=404, detail="No pending suggestion")
    return suggestion.model_dump(mode="json")


@app.post("/projects/{project}/suggestions/{issue_id}/check")
def check_suggestion(project: str, issue_id: str, submission: Optional[CheckSubmission] = None):
    """Dispose of an issue's suggestion"""
    submission = submission or CheckSubmission()
    pipeline = _pipeline(project)
    with _state_lock:
        record = pipeline.lifecycle.mark_checked(
            issue_id,
            Disposition(
                action_taken=submission.action_taken,
                reviewer=submission.reviewer,
                notes=submission.notes,
            ),
        )
    return {"status": "checked", **record.model_dump(mode="json")}


@app.get("/projects/{project}/checked/{issue_id}")
def get_checked(project: str, issue_id: str):
    """Get the checked record of an issue"""
    pipeline = _pipeline(project)
    record = pipeline.lifecycle.get_checked(issue_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Issue has not been checked")
    return record.model_dump(mode="json")


# =============================================================================
# CLI Entry Point
# =============================================================================

def run_server():
    """Run the review server"""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    port = load_config().server.port
    logger.info("Starting server on port %d", port)
    uvicorn.run(
        "triage.suggester.server:app",
        host="0.0.0.0",
        port=port,
        reload=False,
    )


if __name__ == "__main__":
    run_server()
