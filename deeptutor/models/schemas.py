"""
Pydantic schemas for the study domain, AI capability results and API payloads.

Domain records use camelCase aliases on the wire (the field names the UI
reads) and accept either the alias or the Python name on input.
"""
from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialising to camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Enums
class FileType(str, Enum):
    """Inferred document type of an upload."""

    PDF = "pdf"
    PPT = "ppt"
    TXT = "txt"


class SectionStatus(str, Enum):
    LOCKED = "locked"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class MasteryStatus(str, Enum):
    LEARNING = "learning"
    MASTERED = "mastered"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class EnrichmentPhase(str, Enum):
    """Position of a section in the staged enrichment sequence."""

    UNSTARTED = "unstarted"
    CORE = "core"
    LOGIC = "logic"
    RECALL = "recall"
    RESOURCES = "resources"
    DONE = "done"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Domain records
# ---------------------------------------------------------------------------

class FileAttachment(CamelModel):
    """Raw uploaded content: base64 payload, mime type and original filename."""

    data: str
    mime_type: str = "application/octet-stream"
    name: str


class FileInfo(CamelModel):
    """Identity of an uploaded document. Immutable after creation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    name: str
    type: FileType
    upload_date: str


class CoverageStats(CamelModel):
    ingested: int = Field(0, ge=0, le=100)
    retained: int = Field(0, ge=0, le=100)
    validated: int = Field(0, ge=0, le=100)


class KeyTerm(CamelModel):
    term: str
    definition: str


class Formula(CamelModel):
    expression: str
    label: str


class Flashcard(CamelModel):
    id: str
    question: str
    answer: str
    mastery_status: MasteryStatus = MasteryStatus.LEARNING
    failure_count: int = 0
    difficulty: Difficulty = Difficulty.MEDIUM


class McqReview(CamelModel):
    """Structured verdict returned by the answer-evaluation capability."""

    is_correct: bool = False
    verdict: str = ""
    why_user_choice_is_correct_or_wrong: str = ""
    correct_answer_explanation: str = ""
    misconception_detected: str = ""
    concepts_to_review: List[str] = Field(default_factory=list)
    exam_tip: str = ""

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        return _without_nulls(data)


class PracticeQuestion(CamelModel):
    id: str
    question: str
    options: List[str] = Field(default_factory=list)
    correct_index: int = 0
    explanation: str = ""
    has_been_answered: bool = False
    was_correct: Optional[bool] = None
    difficulty_level: int = 3
    deep_insight: Optional[McqReview] = None


class Resource(CamelModel):
    title: str
    url: str
    type: Optional[str] = None
    description: Optional[str] = None
    score: float = 0.9


class ChatMessage(CamelModel):
    role: str
    text: str
    timestamp: Optional[str] = None


class CourseSection(CamelModel):
    """One curriculum unit, enriched stage by stage."""

    id: str
    title: str = "Untitled Unit"
    status: SectionStatus = SectionStatus.LOCKED
    mastery: float = 0
    dependencies: List[str] = Field(default_factory=list)
    source_reference: str = ""

    content: str = ""
    summary: str = ""
    detailed_summary: str = ""
    key_terms: List[KeyTerm] = Field(default_factory=list)
    formulas: List[Formula] = Field(default_factory=list)
    mindmap: str = ""
    flashcards: List[Flashcard] = Field(default_factory=list)
    practice_questions: List[PracticeQuestion] = Field(default_factory=list)
    resources: List[Resource] = Field(default_factory=list)

    is_core_loading: bool = False
    is_logic_loading: bool = False
    is_recall_loading: bool = False
    is_resources_loading: bool = False
    enrichment_phase: EnrichmentPhase = EnrichmentPhase.UNSTARTED

    chat_history: List[ChatMessage] = Field(default_factory=list)

    @property
    def is_loading(self) -> bool:
        return (
            self.is_core_loading
            or self.is_logic_loading
            or self.is_recall_loading
            or self.is_resources_loading
        )


class Workspace(CamelModel):
    """One uploaded document's full study session."""

    file_info: FileInfo
    subject: str
    sections: List[CourseSection]
    active_section_index: int = 0
    attachment: Optional[FileAttachment] = None
    coverage_stats: CoverageStats = Field(default_factory=CoverageStats)

    @model_validator(mode="after")
    def _check_active_index(self) -> "Workspace":
        if self.sections and not 0 <= self.active_section_index < len(self.sections):
            raise ValueError(
                f"activeSectionIndex {self.active_section_index} out of range "
                f"for {len(self.sections)} section(s)"
            )
        return self

    @property
    def id(self) -> str:
        return self.file_info.id


# ---------------------------------------------------------------------------
# AI capability results (default filling happens here, at the boundary)
# ---------------------------------------------------------------------------

def _without_nulls(data: Any) -> Any:
    """Drop explicit nulls so field defaults apply to them."""
    if isinstance(data, dict):
        return {k: v for k, v in data.items() if v is not None}
    return data


class AIResult(BaseModel):
    """Lenient base for model-generated JSON: ignores extras, nulls -> defaults."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        return _without_nulls(data)


class SectionDescriptor(AIResult):
    title: str = "Untitled Unit"
    summary: str = ""
    source_range: str = ""
    source_reference: str = ""
    dependencies: List[str] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def _blank_title(cls, value: str) -> str:
        return value.strip() or "Untitled Unit"

    @field_validator("source_range", "source_reference", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> str:
        return str(value)

    @field_validator("dependencies", mode="before")
    @classmethod
    def _string_list(cls, value: Any) -> List[str]:
        if isinstance(value, (list, tuple)):
            return [str(v) for v in value]
        return []


def _as_text(value: Any) -> Any:
    # Numbers and booleans show up in maths and logic content
    if value is None:
        return ""
    if isinstance(value, (int, float)):
        return str(value)
    return value


Text = Annotated[str, BeforeValidator(_as_text)]


class DefinitionPair(AIResult):
    term: Text = ""
    definition: Text = ""


class AxiomPair(AIResult):
    expression: Text = ""
    label: Text = ""


class CoreResult(AIResult):
    content: str = ""
    summary: str = ""
    definitions: List[DefinitionPair] = Field(default_factory=list)
    axioms: List[AxiomPair] = Field(default_factory=list)


class LogicResult(AIResult):
    mindmap: str = ""

    @field_validator("mindmap", mode="before")
    @classmethod
    def _mindmap_text(cls, value: Any) -> str:
        # Some responses return the mind map as a nested object
        if isinstance(value, str):
            return value
        return json.dumps(value)


DEFAULT_OPTIONS = ["A", "B", "C", "D"]


class RawFlashcard(AIResult):
    question: Text = ""
    answer: Text = ""


class RawQuestion(AIResult):
    question: Text = ""
    options: List[Text] = Field(default_factory=lambda: list(DEFAULT_OPTIONS))
    correct_index: int = 0
    explanation: Text = ""


class RecallResult(AIResult):
    flashcards: List[RawFlashcard] = Field(default_factory=list)
    questions: List[RawQuestion] = Field(default_factory=list)


class ResourceResult(AIResult):
    title: str = ""
    url: str = ""
    type: Optional[str] = None
    description: Optional[str] = None


# ---------------------------------------------------------------------------
# API schemas
# ---------------------------------------------------------------------------

class WorkspaceSummary(CamelModel):
    """Sidebar listing entry for a workspace."""

    id: str
    name: str
    subject: str
    type: FileType
    upload_date: str
    section_count: int
    active_section_index: int
    coverage_stats: CoverageStats


class WorkspaceListResponse(CamelModel):
    workspaces: List[WorkspaceSummary]
    active_workspace_id: str


class WorkspaceUpdateRequest(CamelModel):
    """Fields a client may change on a workspace."""

    subject: Optional[str] = Field(None, min_length=1, max_length=255)
    active_section_index: Optional[int] = Field(None, ge=0)


class EnrichResponse(CamelModel):
    workspace_id: str
    section_index: int
    started: bool
    phase: EnrichmentPhase


class AnswerRequest(CamelModel):
    chosen_index: int = Field(..., ge=0)


class FlashcardReviewRequest(CamelModel):
    mastered: bool


class PurgeResponse(CamelModel):
    removed: int


class ProxyRequest(BaseModel):
    """Body accepted by the AI proxy: model id, contents and generation config."""

    model: Optional[str] = None
    contents: Any = None
    config: Optional[Dict[str, Any]] = None


class HealthCheckResponse(BaseModel):
    """Schema for health check endpoint."""

    status: str
    storage: str
    ai_credential: str
    workspaces: int
    timestamp: datetime
    version: str = "0.1.0"
