"""
Process-wide workspace store with derived coverage statistics.

The store holds every workspace plus the active selection.  Each mutation
computes the next full state from the previous one and swaps it in under a
lock, then writes the persisted part (``workspaces`` and
``activeWorkspaceId``) to the storage port.  ``is_enriching`` is transient
and never written.

Usage
-----
    store = WorkspaceStore(SQLAlchemyStorage())
    store.hydrate()
    store.add_workspace(ws)
    store.update_section(ws.id, 0, {"content": "..."})
"""
from __future__ import annotations

import dataclasses
import json
import logging
import math
import threading
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from deeptutor.config import settings
from deeptutor.database import StoragePort
from deeptutor.models.schemas import (
    CourseSection,
    CoverageStats,
    EnrichmentPhase,
    MasteryStatus,
    Workspace,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Coverage statistics (pure)
# ---------------------------------------------------------------------------

def _percent(part: int, total: int) -> int:
    # Half-up rounding; Python's round() would send 12.5 to 12.
    return int(math.floor(part / max(1, total) * 100 + 0.5))


def compute_coverage_stats(sections: Iterable[CourseSection]) -> CoverageStats:
    """
    Derive ingested / retained / validated percentages from *sections*.

    Denominators floor at 1, so empty collections give 0 rather than failing.
    """
    sections = list(sections)
    ingested = sum(1 for s in sections if s.content)

    flashcards = [card for s in sections for card in s.flashcards]
    mastered = sum(1 for card in flashcards if card.mastery_status == MasteryStatus.MASTERED)

    questions = [q for s in sections for q in s.practice_questions]
    answered_correct = sum(1 for q in questions if q.has_been_answered and q.was_correct)

    return CoverageStats(
        ingested=_percent(ingested, len(sections)),
        retained=_percent(mastered, len(flashcards)),
        validated=_percent(answered_correct, len(questions)),
    )


_LOADING_FLAGS = ("is_core_loading", "is_logic_loading", "is_recall_loading", "is_resources_loading")

_IN_FLIGHT_PHASES = (
    EnrichmentPhase.CORE,
    EnrichmentPhase.LOGIC,
    EnrichmentPhase.RECALL,
    EnrichmentPhase.RESOURCES,
)


def _settle_interrupted(ws: Workspace) -> Workspace:
    """
    Clear the state of enrichment runs that died with the previous process.

    No task survives a restart, so every loading flag is dropped and a section
    caught mid-stage is marked failed.
    """
    interrupted = [
        i for i, s in enumerate(ws.sections)
        if s.is_loading or s.enrichment_phase in _IN_FLIGHT_PHASES
    ]
    if not interrupted:
        return ws

    sections = list(ws.sections)
    for i in interrupted:
        updates: Dict[str, Any] = {flag: False for flag in _LOADING_FLAGS}
        if sections[i].enrichment_phase in _IN_FLIGHT_PHASES:
            updates["enrichment_phase"] = EnrichmentPhase.FAILED
        sections[i] = sections[i].model_copy(update=updates)
    logger.warning(
        "hydrate: reset %d interrupted section(s) in workspace %s",
        len(interrupted),
        ws.file_info.id,
    )
    return ws.model_copy(update={"sections": sections})


# ---------------------------------------------------------------------------
# State snapshot
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class TutorState:
    workspaces: Tuple[Workspace, ...] = ()
    active_workspace_id: str = ""
    is_enriching: bool = False


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class WorkspaceStore:
    """Explicit state container with an injected storage port."""

    def __init__(self, storage: StoragePort, storage_key: str = settings.STORAGE_KEY) -> None:
        self._storage = storage
        self._key = storage_key
        self._state = TutorState()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def state(self) -> TutorState:
        return self._state

    @property
    def workspaces(self) -> List[Workspace]:
        return list(self._state.workspaces)

    @property
    def active_workspace_id(self) -> str:
        return self._state.active_workspace_id

    @property
    def is_enriching(self) -> bool:
        return self._state.is_enriching

    def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        for ws in self._state.workspaces:
            if ws.file_info.id == workspace_id:
                return ws
        return None

    def get_active_workspace(self) -> Optional[Workspace]:
        """Return the workspace matching the active id, or None."""
        return self.get_workspace(self._state.active_workspace_id)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """The persisted part of the state, in wire (camelCase) form."""
        state = self._state
        return {
            "workspaces": [ws.model_dump(mode="json", by_alias=True) for ws in state.workspaces],
            "activeWorkspaceId": state.active_workspace_id,
        }

    def hydrate(self) -> TutorState:
        """
        Load the persisted snapshot.  Falls back to empty state when the
        snapshot is absent, unreadable or invalid; never raises.  Sections
        left mid-enrichment by a previous process come back with their
        loading flags cleared.
        """
        try:
            raw = self._storage.read(self._key)
        except Exception as exc:
            logger.warning("hydrate: storage read failed (%s); starting empty", exc)
            raw = None

        state = TutorState()
        if raw:
            try:
                payload = json.loads(raw)
                workspaces = tuple(
                    _settle_interrupted(Workspace.model_validate(item))
                    for item in payload.get("workspaces", [])
                )
                active_id = str(payload.get("activeWorkspaceId") or "")
                state = TutorState(workspaces=workspaces, active_workspace_id=active_id)
            except (ValueError, TypeError, AttributeError, ValidationError) as exc:
                logger.warning("hydrate: stored snapshot is corrupt (%s); starting empty", exc)

        with self._lock:
            self._state = state
        logger.info(
            "hydrate: %d workspace(s), active=%r",
            len(state.workspaces),
            state.active_workspace_id,
        )
        return state

    def _persist(self) -> None:
        try:
            self._storage.write(self._key, json.dumps(self.snapshot()))
        except Exception as exc:
            # The in-memory state stays authoritative; the next mutation retries the write.
            logger.error("persist: storage write failed: %s", exc, exc_info=True)

    def _commit(self, next_state: TutorState, *, persist: bool = True) -> TutorState:
        self._state = next_state
        if persist:
            self._persist()
        return next_state

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_workspace(self, ws: Workspace) -> TutorState:
        """Prepend *ws* and make it the active workspace."""
        with self._lock:
            state = self._state
            return self._commit(
                dataclasses.replace(
                    state,
                    workspaces=(ws,) + state.workspaces,
                    active_workspace_id=ws.file_info.id,
                )
            )

    def update_workspace(self, workspace_id: str, updates: Dict[str, Any]) -> TutorState:
        """
        Shallow-merge *updates* into the workspace with *workspace_id*.

        Unknown ids are a no-op.  When ``sections`` is part of the update,
        coverage stats are recomputed from the merged section list.
        """
        with self._lock:
            state = self._state
            index = self._index_of(workspace_id)
            if index is None:
                return state

            updates = {k: v for k, v in updates.items() if k != "coverage_stats"}
            merged = state.workspaces[index].model_copy(update=updates)
            if "sections" in updates:
                merged = merged.model_copy(
                    update={"coverage_stats": compute_coverage_stats(merged.sections)}
                )

            workspaces = list(state.workspaces)
            workspaces[index] = merged
            return self._commit(dataclasses.replace(state, workspaces=tuple(workspaces)))

    def update_section(
        self,
        workspace_id: str,
        section_index: int,
        updates: Dict[str, Any],
    ) -> TutorState:
        """Merge *updates* into the currently stored section at *section_index*."""
        with self._lock:
            ws = self.get_workspace(workspace_id)
            if ws is None or not 0 <= section_index < len(ws.sections):
                return self._state
            sections = list(ws.sections)
            sections[section_index] = sections[section_index].model_copy(update=updates)
            return self.update_workspace(workspace_id, {"sections": sections})

    def set_workspaces(self, workspaces: List[Workspace]) -> TutorState:
        """Replace the whole workspace list."""
        with self._lock:
            return self._commit(dataclasses.replace(self._state, workspaces=tuple(workspaces)))

    def set_active_workspace_id(self, workspace_id: str) -> TutorState:
        with self._lock:
            return self._commit(
                dataclasses.replace(self._state, active_workspace_id=workspace_id)
            )

    def set_is_enriching(self, flag: bool) -> TutorState:
        with self._lock:
            return self._commit(dataclasses.replace(self._state, is_enriching=flag), persist=False)

    def purge(self) -> int:
        """Drop every workspace and clear the selection. Returns how many were removed."""
        with self._lock:
            removed = len(self._state.workspaces)
            self.set_workspaces([])
            self.set_active_workspace_id("")
        logger.info("purge: removed %d workspace(s)", removed)
        return removed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _index_of(self, workspace_id: str) -> Optional[int]:
        for i, ws in enumerate(self._state.workspaces):
            if ws.file_info.id == workspace_id:
                return i
        return None
