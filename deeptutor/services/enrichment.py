"""
Progressive, resumable enrichment of course sections.

Each section moves through a small state machine

    unstarted -> core -> logic -> recall -> resources -> done
                   \\______\\_______\\_________\\-> failed

Every stage sets its loading flag, awaits one AI capability, then merges the
stage's reducer output into the store with the flag cleared.  A failing stage
aborts the remaining ones, clears all four flags and keeps whatever earlier
stages already merged.

Usage
-----
    orchestrator = EnrichmentOrchestrator(store, ai)
    orchestrator.ensure_enriched(ws_id, 0)      # background task, guarded
    phase = await orchestrator.enrich_section(ws_id, 0)   # direct full run
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from deeptutor.models.schemas import (
    CoreResult,
    CourseSection,
    Difficulty,
    EnrichmentPhase,
    FileAttachment,
    Flashcard,
    Formula,
    KeyTerm,
    LogicResult,
    MasteryStatus,
    PracticeQuestion,
    RecallResult,
    Resource,
)
from deeptutor.services.errors import StageGenerationError, handle_ai_error
from deeptutor.services.store import WorkspaceStore
from deeptutor.services.tutor_ai import TutorAIService
from deeptutor.utils.helpers import generate_id

logger = logging.getLogger(__name__)

RESOURCE_SCORE = 0.9


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

STAGE_ORDER: Tuple[EnrichmentPhase, ...] = (
    EnrichmentPhase.CORE,
    EnrichmentPhase.LOGIC,
    EnrichmentPhase.RECALL,
    EnrichmentPhase.RESOURCES,
)

LOADING_FLAGS: Dict[EnrichmentPhase, str] = {
    EnrichmentPhase.CORE: "is_core_loading",
    EnrichmentPhase.LOGIC: "is_logic_loading",
    EnrichmentPhase.RECALL: "is_recall_loading",
    EnrichmentPhase.RESOURCES: "is_resources_loading",
}

_TRANSITIONS: Dict[EnrichmentPhase, EnrichmentPhase] = {
    EnrichmentPhase.UNSTARTED: EnrichmentPhase.CORE,
    EnrichmentPhase.CORE: EnrichmentPhase.LOGIC,
    EnrichmentPhase.LOGIC: EnrichmentPhase.RECALL,
    EnrichmentPhase.RECALL: EnrichmentPhase.RESOURCES,
    EnrichmentPhase.RESOURCES: EnrichmentPhase.DONE,
    # A re-run always starts over from the first stage
    EnrichmentPhase.DONE: EnrichmentPhase.CORE,
    EnrichmentPhase.FAILED: EnrichmentPhase.CORE,
}


def next_phase(phase: EnrichmentPhase, *, failed: bool = False) -> EnrichmentPhase:
    """
    Transition function of the per-section state machine.

    A stage that fails moves to FAILED; only active stages can fail.
    """
    if failed:
        if phase not in STAGE_ORDER:
            raise ValueError(f"Phase {phase.value!r} is not an active stage")
        return EnrichmentPhase.FAILED
    return _TRANSITIONS[phase]


def cleared_flags() -> Dict[str, bool]:
    return {flag: False for flag in LOADING_FLAGS.values()}


# ---------------------------------------------------------------------------
# Stage reducers (pure: stage result -> section update)
# ---------------------------------------------------------------------------

def reduce_core(result: CoreResult) -> Dict[str, Any]:
    return {
        "content": result.content,
        "summary": result.summary,
        "detailed_summary": result.summary,
        "key_terms": [KeyTerm(term=d.term, definition=d.definition) for d in result.definitions],
        "formulas": [Formula(expression=a.expression, label=a.label) for a in result.axioms],
    }


def reduce_logic(result: LogicResult) -> Dict[str, Any]:
    return {"mindmap": result.mindmap}


def reduce_recall(result: RecallResult) -> Dict[str, Any]:
    return {
        "flashcards": [
            Flashcard(
                id=generate_id(),
                question=card.question,
                answer=card.answer,
                mastery_status=MasteryStatus.LEARNING,
                failure_count=0,
                difficulty=Difficulty.MEDIUM,
            )
            for card in result.flashcards
        ],
        "practice_questions": [
            PracticeQuestion(
                id=generate_id(),
                question=q.question,
                options=list(q.options),
                correct_index=q.correct_index,
                explanation=q.explanation,
                has_been_answered=False,
                difficulty_level=3,
            )
            for q in result.questions
        ],
    }


def reduce_resources(result: list) -> Dict[str, Any]:
    # The model's own relevance scoring is discarded.
    return {
        "resources": [
            Resource(
                title=r.title,
                url=r.url,
                type=r.type,
                description=r.description,
                score=RESOURCE_SCORE,
            )
            for r in result
        ]
    }


_REDUCERS: Dict[EnrichmentPhase, Callable[[Any], Dict[str, Any]]] = {
    EnrichmentPhase.CORE: reduce_core,
    EnrichmentPhase.LOGIC: reduce_logic,
    EnrichmentPhase.RECALL: reduce_recall,
    EnrichmentPhase.RESOURCES: reduce_resources,
}


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class EnrichmentOrchestrator:
    """Runs the four enrichment stages for a section and tracks running tasks."""

    def __init__(self, store: WorkspaceStore, ai: TutorAIService) -> None:
        self.store = store
        self.ai = ai
        self._tasks: Dict[str, asyncio.Task] = {}
        self._active_runs = 0

    # ------------------------------------------------------------------
    # Task bookkeeping
    # ------------------------------------------------------------------

    def is_running(self, section_id: str) -> bool:
        task = self._tasks.get(section_id)
        return task is not None and not task.done()

    async def wait_all(self) -> None:
        """Wait for every in-flight enrichment task to finish."""
        pending = [t for t in self._tasks.values() if not t.done()]
        while pending:
            await asyncio.gather(*pending, return_exceptions=True)
            pending = [t for t in self._tasks.values() if not t.done()]

    def start(self, workspace_id: str, section_index: int) -> asyncio.Task:
        """
        Launch a background enrichment task for one section.

        Raises RuntimeError if that section is already being enriched.
        """
        section = self._locate(workspace_id, section_index)
        if self.is_running(section.id):
            raise RuntimeError(f"Enrichment already running for section {section.id}")

        async def _wrapper() -> None:
            try:
                await self.enrich_section(workspace_id, section_index)
            except Exception as exc:
                logger.error(
                    "Enrichment task crashed for section %s: %s", section.id, exc, exc_info=True
                )

        task = asyncio.create_task(_wrapper())
        self._tasks[section.id] = task
        task.add_done_callback(lambda t: self._cleanup(section.id, t))

        logger.info("Enrichment task started for workspace %s section %d", workspace_id, section_index)
        return task

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def ensure_enriched(self, workspace_id: str, section_index: int) -> bool:
        """
        Start enrichment unless the section already has content, is loading,
        is being enriched, or its workspace has no attachment.

        Returns True when a new run was started.
        """
        ws = self.store.get_workspace(workspace_id)
        section = self._locate(workspace_id, section_index)
        if section.content or section.is_loading or self.is_running(section.id):
            return False
        if ws is None or ws.attachment is None:
            return False
        self.start(workspace_id, section_index)
        return True

    def restart(self, workspace_id: str, section_index: int) -> bool:
        """Re-run every stage from the first, overwriting earlier results."""
        section = self._locate(workspace_id, section_index)
        if section.is_loading or self.is_running(section.id):
            return False
        self.start(workspace_id, section_index)
        return True

    def select_section(self, workspace_id: str, section_index: int) -> bool:
        """Make *section_index* the active section and enrich it if needed."""
        self._locate(workspace_id, section_index)
        self.store.update_workspace(workspace_id, {"active_section_index": section_index})
        return self.ensure_enriched(workspace_id, section_index)

    def next_section(self, workspace_id: str) -> Optional[int]:
        """Advance to the next section. Returns its index, or None at the end."""
        ws = self.store.get_workspace(workspace_id)
        if ws is None:
            raise LookupError(f"Workspace {workspace_id} not found")
        next_index = ws.active_section_index + 1
        if next_index >= len(ws.sections):
            return None
        self.select_section(workspace_id, next_index)
        return next_index

    async def enrich_section(self, workspace_id: str, section_index: int) -> EnrichmentPhase:
        """
        Run core -> logic -> recall -> resources for one section.

        Returns the final phase: DONE on success, FAILED if a stage failed,
        UNSTARTED if the workspace has no attachment to work from.
        """
        ws = self.store.get_workspace(workspace_id)
        section = self._locate(workspace_id, section_index)
        if ws is None or ws.attachment is None:
            logger.warning("enrich_section: workspace %s has no attachment", workspace_id)
            return EnrichmentPhase.UNSTARTED
        attachment = ws.attachment

        self._active_runs += 1
        self.store.set_is_enriching(True)
        phase = next_phase(EnrichmentPhase.UNSTARTED)
        try:
            while phase in STAGE_ORDER:
                flag = LOADING_FLAGS[phase]
                self.store.update_section(
                    workspace_id, section_index, {flag: True, "enrichment_phase": phase}
                )
                try:
                    result = await self._run_stage(phase, section, attachment)
                    updates = _REDUCERS[phase](result)
                except Exception as exc:
                    raise StageGenerationError(phase.value, exc) from exc

                following = next_phase(phase)
                updates.update({flag: False, "enrichment_phase": following})
                self.store.update_section(workspace_id, section_index, updates)
                logger.info(
                    "enrich_section: %s stage done for section %r", phase.value, section.title
                )
                phase = following
        except StageGenerationError as exc:
            logger.error(
                "enrich_section: %s (section %r): %s",
                exc,
                section.title,
                handle_ai_error(exc),
                exc_info=exc.cause,
            )
            phase = next_phase(phase, failed=True)
            self.store.update_section(
                workspace_id, section_index, {**cleared_flags(), "enrichment_phase": phase}
            )
        except asyncio.CancelledError:
            self.store.update_section(
                workspace_id,
                section_index,
                {**cleared_flags(), "enrichment_phase": EnrichmentPhase.FAILED},
            )
            raise
        finally:
            self._active_runs -= 1
            if self._active_runs == 0:
                self.store.set_is_enriching(False)
        return phase

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _run_stage(
        self,
        phase: EnrichmentPhase,
        section: CourseSection,
        attachment: FileAttachment,
    ) -> Awaitable[Any]:
        if phase is EnrichmentPhase.CORE:
            return self.ai.generate_core(section, attachment)
        if phase is EnrichmentPhase.LOGIC:
            return self.ai.generate_logic(section, attachment)
        if phase is EnrichmentPhase.RECALL:
            return self.ai.generate_recall(section, attachment)
        return self.ai.generate_resources(section)

    def _cleanup(self, section_id: str, task: asyncio.Task) -> None:
        """Drop the task reference unless a newer run replaced it."""
        if self._tasks.get(section_id) is task:
            del self._tasks[section_id]

    def _locate(self, workspace_id: str, section_index: int) -> CourseSection:
        ws = self.store.get_workspace(workspace_id)
        if ws is None:
            raise LookupError(f"Workspace {workspace_id} not found")
        if not 0 <= section_index < len(ws.sections):
            raise LookupError(
                f"Section {section_index} out of range for workspace {workspace_id}"
            )
        return ws.sections[section_index]
