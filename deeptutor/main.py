"""
Main FastAPI application for the DeepTutor backend.
Handles CORS, request logging middleware, lifespan events, and router registration.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from deeptutor.config import settings
from deeptutor.database import SQLAlchemyStorage
from deeptutor.routers import health, proxy, sections, workspaces
from deeptutor.services.enrichment import EnrichmentOrchestrator
from deeptutor.services.gemini import GeminiClient
from deeptutor.services.store import WorkspaceStore
from deeptutor.services.tutor_ai import TutorAIService

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown event handler."""
    logger.info("=" * 60)
    logger.info("  Starting DeepTutor backend …")
    logger.info("=" * 60)

    # 1. Durable storage + store hydration (hydration never raises)
    storage = SQLAlchemyStorage(settings.STORAGE_URL)
    storage.init()
    store = WorkspaceStore(storage)
    store.hydrate()

    # 2. AI clients
    gemini = GeminiClient()
    if gemini.configured:
        logger.info("✓ Gemini credential present (model %s)", settings.GEMINI_MODEL)
    else:
        logger.warning(
            "⚠ GEMINI_API_KEY is not set — the AI proxy will reject generation requests"
        )
    ai = TutorAIService()
    logger.info("✓ AI proxy URL: %s", ai.proxy_url)

    app.state.storage = storage
    app.state.store = store
    app.state.gemini = gemini
    app.state.ai = ai
    app.state.orchestrator = EnrichmentOrchestrator(store, ai)

    logger.info("=" * 60)
    logger.info("  DeepTutor backend ready on http://%s:%d", settings.HOST, settings.PORT)
    logger.info("  Swagger UI : http://%s:%d/docs", settings.HOST, settings.PORT)
    logger.info("=" * 60)

    yield  # ← server is running

    logger.info("Shutting down DeepTutor backend …")
    await app.state.orchestrator.wait_all()
    storage.close()
    logger.info("✓ Shutdown complete.")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="DeepTutor API",
    description=(
        "**DeepTutor** — AI study assistant.\n\n"
        "Upload a document, get it split into a curriculum, and study each "
        "section with generated explanations, mind maps, flashcards and "
        "practice questions.\n\n"
        "Key endpoints:\n"
        "- `POST /api/workspaces/upload` — create a workspace from a document\n"
        "- `POST /api/workspaces/{id}/sections/{index}/select` — open (and enrich) a section\n"
        "- `POST /api/workspaces/{id}/sections/{index}/questions/{qid}/answer` — graded answer\n"
        "- `POST /api/ai/proxy` — Gemini proxy\n"
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request / response logging middleware
# ---------------------------------------------------------------------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with method, path, status code, and elapsed time.
    Attaches an ``X-Process-Time`` header (milliseconds) to every response.
    """
    t0 = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - t0) * 1000, 2)

    # Skip health checks and the UI's workspace polling
    if request.url.path not in ("/api/health/", "/") and request.method != "GET":
        logger.info(
            "%s %s → %d  (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )

    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    return response


# ---------------------------------------------------------------------------
# Global exception handler
# ---------------------------------------------------------------------------

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return a structured JSON error for any unhandled exception."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "error": str(exc),
            "path": str(request.url.path),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(health.router,      prefix="/api/health",                          tags=["Health"])
app.include_router(workspaces.router,  prefix="/api/workspaces",                      tags=["Workspaces"])
app.include_router(sections.router,    prefix="/api/workspaces/{workspace_id}/sections", tags=["Sections"])
app.include_router(proxy.router,       prefix="/api/ai",                              tags=["AI"])


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    """API root — returns basic service info."""
    return {
        "name": "DeepTutor API",
        "version": "0.1.0",
        "description": "AI Study Assistant Backend",
        "docs": "/docs",
        "health": "/api/health",
        "endpoints": {
            "workspaces": "/api/workspaces",
            "sections": "/api/workspaces/{id}/sections",
            "proxy": "/api/ai/proxy",
        },
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "deeptutor.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level="info",
    )
