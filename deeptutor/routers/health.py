"""
Health check endpoint.
"""
from fastapi import APIRouter, Depends, Request
from datetime import datetime, timezone
import logging

from deeptutor.config import settings
from deeptutor.dependencies.services import get_store
from deeptutor.models.schemas import HealthCheckResponse
from deeptutor.services.store import WorkspaceStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=HealthCheckResponse)
async def health_check(request: Request, store: WorkspaceStore = Depends(get_store)):
    """
    Health check endpoint to verify system status.

    Returns:
        HealthCheckResponse with status of storage and the AI credential
    """
    storage_status = "ok"
    storage = getattr(request.app.state, "storage", None)
    ping = getattr(storage, "ping", None)
    if ping is not None and not ping():
        storage_status = "error"

    ai_status = "ok" if settings.GEMINI_API_KEY else "missing"

    overall_status = "healthy" if storage_status == "ok" and ai_status == "ok" else "degraded"

    return HealthCheckResponse(
        status=overall_status,
        storage=storage_status,
        ai_credential=ai_status,
        workspaces=len(store.workspaces),
        timestamp=datetime.now(timezone.utc),
    )
