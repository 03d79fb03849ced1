"""
Service dependencies for FastAPI routes.

The store, AI client and orchestrator are built once in the application
lifespan and kept on ``app.state``; routes receive them through these
functions so tests can swap them with ``app.dependency_overrides``.
"""
from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from deeptutor.models.schemas import Workspace
from deeptutor.services.enrichment import EnrichmentOrchestrator
from deeptutor.services.store import WorkspaceStore
from deeptutor.services.tutor_ai import TutorAIService


def get_store(request: Request) -> WorkspaceStore:
    return request.app.state.store


def get_ai_service(request: Request) -> TutorAIService:
    return request.app.state.ai


def get_orchestrator(request: Request) -> EnrichmentOrchestrator:
    return request.app.state.orchestrator


async def get_workspace_or_404(
    workspace_id: str,
    store: WorkspaceStore = Depends(get_store),
) -> Workspace:
    """Resolve the ``workspace_id`` path parameter or raise 404."""
    ws = store.get_workspace(workspace_id)
    if ws is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Workspace {workspace_id} not found.",
        )
    return ws
