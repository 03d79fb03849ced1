"""
Error taxonomy for the tutor core and the single translation step that turns
any raised error into a short, user-presentable message.
"""
from __future__ import annotations

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class TutorError(Exception):
    """Base class for errors raised by the tutor services."""


class AIServiceError(TutorError):
    """The AI capability could not be reached or returned unusable output."""

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class StructureExtractionError(TutorError):
    """Document structure extraction produced no usable sections."""


class StageGenerationError(TutorError):
    """One enrichment stage failed; later stages for the section are skipped."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(f"{stage} stage failed: {cause}")
        self.stage = stage
        self.cause = cause


class EvaluationError(TutorError):
    """Answer evaluation failed; the question stays unanswered."""


def handle_ai_error(exc: BaseException) -> str:
    """Map *exc* to a message fit for display. Raw detail is logged only."""
    logger.debug("handle_ai_error: %r", exc)

    if isinstance(exc, StageGenerationError):
        exc = exc.cause
    elif isinstance(exc, EvaluationError) and isinstance(exc.__cause__, Exception):
        exc = exc.__cause__

    if isinstance(exc, StructureExtractionError):
        return "Could not extract logical units from the document. Is it empty?"

    code = getattr(exc, "code", None)
    text = str(exc).upper()

    if code == "API_KEY_MISSING_ON_SERVER" or "API_KEY" in text:
        return "The AI service is not configured. Set GEMINI_API_KEY on the server."
    if isinstance(exc, httpx.TimeoutException) or "TIMEOUT" in text or "TIMED OUT" in text:
        return "The AI service took too long to respond. Please try again."
    if "429" in text or "QUOTA" in text or "RESOURCE_EXHAUSTED" in text or "RATE LIMIT" in text:
        return "The AI service is busy (rate limit reached). Please wait a moment and retry."
    if isinstance(exc, (httpx.ConnectError, httpx.NetworkError)):
        return "Could not reach the AI service. Check your connection."
    if "SAFETY" in text or "BLOCKED" in text:
        return "The AI service declined to process this content."
    if isinstance(exc, AIServiceError) and code == "INVALID_JSON":
        return "The AI service returned an unreadable response. Please try again."
    return "Something went wrong while talking to the AI service. Please try again."
