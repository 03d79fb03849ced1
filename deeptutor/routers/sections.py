"""
Section endpoints: navigation, enrichment, practice questions and flashcards.

All routes live under /api/workspaces/{workspace_id}/sections.
"""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from deeptutor.dependencies.services import (
    get_ai_service,
    get_orchestrator,
    get_store,
    get_workspace_or_404,
)
from deeptutor.models.schemas import (
    AnswerRequest,
    CourseSection,
    EnrichResponse,
    Flashcard,
    FlashcardReviewRequest,
    PracticeQuestion,
    Workspace,
)
from deeptutor.services.enrichment import EnrichmentOrchestrator
from deeptutor.services.errors import EvaluationError
from deeptutor.services.evaluation import answer_question, review_flashcard, review_queue
from deeptutor.services.store import WorkspaceStore
from deeptutor.services.tutor_ai import TutorAIService

logger = logging.getLogger(__name__)

router = APIRouter()


def _section_or_404(ws: Workspace, section_index: int) -> CourseSection:
    if not 0 <= section_index < len(ws.sections):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Section {section_index} not found.",
        )
    return ws.sections[section_index]


def _enrich_response(store: WorkspaceStore, workspace_id: str, index: int, started: bool) -> EnrichResponse:
    section = store.get_workspace(workspace_id).sections[index]
    return EnrichResponse(
        workspace_id=workspace_id,
        section_index=index,
        started=started,
        phase=section.enrichment_phase,
    )


# ---------------------------------------------------------------------------
# Navigation + enrichment
# ---------------------------------------------------------------------------

@router.get("/{section_index}", response_model=CourseSection)
async def get_section(section_index: int, ws: Workspace = Depends(get_workspace_or_404)) -> CourseSection:
    return _section_or_404(ws, section_index)


@router.post("/next", response_model=EnrichResponse)
async def next_section(
    ws: Workspace = Depends(get_workspace_or_404),
    store: WorkspaceStore = Depends(get_store),
    orchestrator: EnrichmentOrchestrator = Depends(get_orchestrator),
) -> EnrichResponse:
    """Advance to the following section and enrich it if it is still empty."""
    before = {s.id for s in ws.sections if orchestrator.is_running(s.id)}
    index = orchestrator.next_section(ws.file_info.id)
    if index is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Already at the last section.",
        )
    started = orchestrator.is_running(ws.sections[index].id) and ws.sections[index].id not in before
    return _enrich_response(store, ws.file_info.id, index, started)


@router.post("/{section_index}/select", response_model=EnrichResponse)
async def select_section(
    section_index: int,
    ws: Workspace = Depends(get_workspace_or_404),
    store: WorkspaceStore = Depends(get_store),
    orchestrator: EnrichmentOrchestrator = Depends(get_orchestrator),
) -> EnrichResponse:
    _section_or_404(ws, section_index)
    started = orchestrator.select_section(ws.file_info.id, section_index)
    return _enrich_response(store, ws.file_info.id, section_index, started)


@router.post(
    "/{section_index}/enrich",
    response_model=EnrichResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def enrich_section(
    section_index: int,
    force: bool = False,
    ws: Workspace = Depends(get_workspace_or_404),
    store: WorkspaceStore = Depends(get_store),
    orchestrator: EnrichmentOrchestrator = Depends(get_orchestrator),
) -> EnrichResponse:
    """
    Ensure a section is enriched.  With ``force=true`` every stage is re-run
    from the start even if the section already has content.
    """
    _section_or_404(ws, section_index)
    if ws.attachment is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Workspace has no source document to enrich from.",
        )
    if force:
        started = orchestrator.restart(ws.file_info.id, section_index)
    else:
        started = orchestrator.ensure_enriched(ws.file_info.id, section_index)
    return _enrich_response(store, ws.file_info.id, section_index, started)


# ---------------------------------------------------------------------------
# Practice questions
# ---------------------------------------------------------------------------

@router.post(
    "/{section_index}/questions/{question_id}/answer",
    response_model=PracticeQuestion,
)
async def answer_practice_question(
    section_index: int,
    question_id: str,
    body: AnswerRequest,
    ws: Workspace = Depends(get_workspace_or_404),
    store: WorkspaceStore = Depends(get_store),
    ai: TutorAIService = Depends(get_ai_service),
) -> PracticeQuestion:
    """Evaluate an answer. Answered questions are returned as-is and never re-graded."""
    _section_or_404(ws, section_index)
    try:
        return await answer_question(
            store, ai, ws.file_info.id, section_index, question_id, body.chosen_index
        )
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    except EvaluationError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))


@router.get("/{section_index}/questions/review", response_model=List[PracticeQuestion])
async def list_review_questions(
    section_index: int,
    ws: Workspace = Depends(get_workspace_or_404),
) -> List[PracticeQuestion]:
    return review_queue(_section_or_404(ws, section_index))


# ---------------------------------------------------------------------------
# Flashcards
# ---------------------------------------------------------------------------

@router.post("/{section_index}/flashcards/{card_id}/review", response_model=Flashcard)
async def review_section_flashcard(
    section_index: int,
    card_id: str,
    body: FlashcardReviewRequest,
    ws: Workspace = Depends(get_workspace_or_404),
    store: WorkspaceStore = Depends(get_store),
) -> Flashcard:
    _section_or_404(ws, section_index)
    try:
        return review_flashcard(store, ws.file_info.id, section_index, card_id, body.mastered)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
