"""
Workspace endpoints.

POST   /upload           read a document, extract its curriculum, start enrichment.
GET    /                 sidebar listing + active workspace id.
GET    /active           the active workspace.
GET    /{id}             one workspace (without the raw attachment).
PATCH  /{id}             rename the subject or move the active section.
POST   /{id}/activate    make a workspace active.
DELETE /                 purge every workspace.
"""
from __future__ import annotations

import base64
import logging
from pathlib import Path

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from deeptutor.config import settings
from deeptutor.dependencies.services import (
    get_ai_service,
    get_orchestrator,
    get_store,
    get_workspace_or_404,
)
from deeptutor.models.schemas import (
    FileAttachment,
    PurgeResponse,
    Workspace,
    WorkspaceListResponse,
    WorkspaceSummary,
    WorkspaceUpdateRequest,
)
from deeptutor.services.enrichment import EnrichmentOrchestrator
from deeptutor.services.errors import AIServiceError, StructureExtractionError, handle_ai_error
from deeptutor.services.initialization import initialize_workspace
from deeptutor.services.store import WorkspaceStore
from deeptutor.services.tutor_ai import TutorAIService

logger = logging.getLogger(__name__)

router = APIRouter()

_WORKSPACE_EXCLUDE = {"attachment"}


def _summary(ws: Workspace) -> WorkspaceSummary:
    return WorkspaceSummary(
        id=ws.file_info.id,
        name=ws.file_info.name,
        subject=ws.subject,
        type=ws.file_info.type,
        upload_date=ws.file_info.upload_date,
        section_count=len(ws.sections),
        active_section_index=ws.active_section_index,
        coverage_stats=ws.coverage_stats,
    )


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------

@router.post(
    "/upload",
    response_model=Workspace,
    response_model_exclude=_WORKSPACE_EXCLUDE,
    status_code=status.HTTP_201_CREATED,
)
async def upload_document(
    file: UploadFile = File(...),
    store: WorkspaceStore = Depends(get_store),
    ai: TutorAIService = Depends(get_ai_service),
    orchestrator: EnrichmentOrchestrator = Depends(get_orchestrator),
) -> Workspace:
    """
    Turn an uploaded document into a new, active workspace.

    - Max file size: 5.5 MB (configurable via MAX_UPLOAD_SIZE)
    - Enrichment of the first section starts in the background
    """
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Upload must include a filename.",
        )

    file_ext = Path(file.filename).suffix.lower()
    if file_ext not in settings.SUPPORTED_FILE_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                f"Unsupported file type '{file_ext}'. "
                f"Accepted: {', '.join(settings.SUPPORTED_FILE_TYPES)}"
            ),
        )

    # Read in slices while enforcing the size limit
    buffer = bytearray()
    while True:
        chunk = await file.read(1024 * 1024)
        if not chunk:
            break
        buffer.extend(chunk)
        if len(buffer) > settings.MAX_UPLOAD_SIZE:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=(
                    f"File too large. Maximum size is "
                    f"{settings.MAX_UPLOAD_SIZE / (1024 * 1024):.1f}MB for stability."
                ),
            )

    if not buffer:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Uploaded file is empty.",
        )

    attachment = FileAttachment(
        data=base64.b64encode(bytes(buffer)).decode("ascii"),
        mime_type=file.content_type or "application/octet-stream",
        name=file.filename,
    )
    logger.info("Received %r (%s bytes)", file.filename, f"{len(buffer):,}")

    try:
        workspace = await initialize_workspace(attachment, ai)
    except StructureExtractionError as exc:
        logger.error("Initialization failed for %r: %s", file.filename, exc)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=handle_ai_error(exc),
        )
    except AIServiceError as exc:
        logger.error("Initialization failed for %r: %s", file.filename, exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=handle_ai_error(exc),
        )

    store.add_workspace(workspace)
    orchestrator.ensure_enriched(workspace.file_info.id, 0)
    return store.get_workspace(workspace.file_info.id)


# ---------------------------------------------------------------------------
# Listing / lookup
# ---------------------------------------------------------------------------

@router.get("", response_model=WorkspaceListResponse)
async def list_workspaces(store: WorkspaceStore = Depends(get_store)) -> WorkspaceListResponse:
    return WorkspaceListResponse(
        workspaces=[_summary(ws) for ws in store.workspaces],
        active_workspace_id=store.active_workspace_id,
    )


@router.get("/active", response_model=Workspace, response_model_exclude=_WORKSPACE_EXCLUDE)
async def get_active_workspace(store: WorkspaceStore = Depends(get_store)) -> Workspace:
    ws = store.get_active_workspace()
    if ws is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active workspace.",
        )
    return ws


@router.get("/{workspace_id}", response_model=Workspace, response_model_exclude=_WORKSPACE_EXCLUDE)
async def get_workspace(ws: Workspace = Depends(get_workspace_or_404)) -> Workspace:
    return ws


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

@router.patch("/{workspace_id}", response_model=Workspace, response_model_exclude=_WORKSPACE_EXCLUDE)
async def update_workspace(
    body: WorkspaceUpdateRequest,
    ws: Workspace = Depends(get_workspace_or_404),
    store: WorkspaceStore = Depends(get_store),
) -> Workspace:
    updates = body.model_dump(exclude_unset=True, exclude_none=True)
    index = updates.get("active_section_index")
    if index is not None and index >= len(ws.sections):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"activeSectionIndex must be below {len(ws.sections)}.",
        )
    store.update_workspace(ws.file_info.id, updates)
    return store.get_workspace(ws.file_info.id)


@router.post("/{workspace_id}/activate", response_model=WorkspaceListResponse)
async def activate_workspace(
    ws: Workspace = Depends(get_workspace_or_404),
    store: WorkspaceStore = Depends(get_store),
) -> WorkspaceListResponse:
    store.set_active_workspace_id(ws.file_info.id)
    return await list_workspaces(store)


@router.delete("", response_model=PurgeResponse)
async def purge_workspaces(store: WorkspaceStore = Depends(get_store)) -> PurgeResponse:
    """Global purge: remove every workspace and clear the selection."""
    return PurgeResponse(removed=store.purge())
