"""
Answer evaluation for practice questions and flashcard review bookkeeping.
"""
from __future__ import annotations

import logging
from typing import List, Tuple

from deeptutor.models.schemas import (
    CourseSection,
    Flashcard,
    MasteryStatus,
    PracticeQuestion,
    Workspace,
)
from deeptutor.services.errors import EvaluationError, handle_ai_error
from deeptutor.services.store import WorkspaceStore
from deeptutor.services.tutor_ai import TutorAIService

logger = logging.getLogger(__name__)


def _locate_section(store: WorkspaceStore, workspace_id: str, section_index: int) -> Tuple[Workspace, CourseSection]:
    ws = store.get_workspace(workspace_id)
    if ws is None:
        raise LookupError(f"Workspace {workspace_id} not found")
    if not 0 <= section_index < len(ws.sections):
        raise LookupError(f"Section {section_index} out of range for workspace {workspace_id}")
    return ws, ws.sections[section_index]


def review_queue(section: CourseSection) -> List[PracticeQuestion]:
    """Questions the student has answered incorrectly."""
    return [q for q in section.practice_questions if q.has_been_answered and not q.was_correct]


async def answer_question(
    store: WorkspaceStore,
    ai: TutorAIService,
    workspace_id: str,
    section_index: int,
    question_id: str,
    chosen_index: int,
) -> PracticeQuestion:
    """
    Grade one answer through the evaluation capability and record the verdict.

    An already-answered question is returned unchanged without calling the
    model.  If evaluation fails, EvaluationError is raised and nothing in the
    store changes.
    """
    ws, section = _locate_section(store, workspace_id, section_index)
    question = next((q for q in section.practice_questions if q.id == question_id), None)
    if question is None:
        raise LookupError(f"Question {question_id} not found")
    if question.has_been_answered:
        return question
    if not 0 <= chosen_index < len(question.options):
        raise ValueError(f"Option {chosen_index} out of range for question {question_id}")
    if ws.attachment is None:
        raise EvaluationError("Workspace has no source document to evaluate against")

    try:
        review = await ai.evaluate_response(question, chosen_index, section, ws.attachment)
    except Exception as exc:
        logger.error("answer_question: evaluation failed for %s: %s", question_id, exc, exc_info=True)
        raise EvaluationError(handle_ai_error(exc)) from exc

    # Re-read: the section may have changed while the model was thinking.
    _, section = _locate_section(store, workspace_id, section_index)
    answered = None
    questions: List[PracticeQuestion] = []
    for q in section.practice_questions:
        if q.id == question_id and not q.has_been_answered:
            q = q.model_copy(
                update={
                    "has_been_answered": True,
                    "was_correct": review.is_correct,
                    "deep_insight": review,
                }
            )
            answered = q
        questions.append(q)

    if answered is None:
        # Answered concurrently or replaced by a re-run of the recall stage
        current = next((q for q in section.practice_questions if q.id == question_id), None)
        if current is None:
            raise LookupError(f"Question {question_id} not found")
        return current

    store.update_section(workspace_id, section_index, {"practice_questions": questions})
    logger.info(
        "answer_question: %s answered %s in workspace %s",
        question_id,
        "correctly" if review.is_correct else "incorrectly",
        workspace_id,
    )
    return answered


def review_flashcard(
    store: WorkspaceStore,
    workspace_id: str,
    section_index: int,
    card_id: str,
    mastered: bool,
) -> Flashcard:
    """Mark a flashcard mastered, or count a failed recall and keep it in learning."""
    _, section = _locate_section(store, workspace_id, section_index)

    reviewed = None
    cards: List[Flashcard] = []
    for card in section.flashcards:
        if card.id == card_id:
            if mastered:
                card = card.model_copy(update={"mastery_status": MasteryStatus.MASTERED})
            else:
                card = card.model_copy(
                    update={
                        "mastery_status": MasteryStatus.LEARNING,
                        "failure_count": card.failure_count + 1,
                    }
                )
            reviewed = card
        cards.append(card)

    if reviewed is None:
        raise LookupError(f"Flashcard {card_id} not found")

    store.update_section(workspace_id, section_index, {"flashcards": cards})
    return reviewed
