"""Domain records, AI result types and API schemas for DeepTutor."""
from deeptutor.models.schemas import (
    CoverageStats,
    CourseSection,
    EnrichmentPhase,
    FileAttachment,
    FileInfo,
    FileType,
    Flashcard,
    MasteryStatus,
    McqReview,
    PracticeQuestion,
    SectionDescriptor,
    SectionStatus,
    Workspace,
    WorkspaceListResponse,
    HealthCheckResponse,
)

__all__ = [
    # Domain records
    "CoverageStats",
    "CourseSection",
    "EnrichmentPhase",
    "FileAttachment",
    "FileInfo",
    "FileType",
    "Flashcard",
    "MasteryStatus",
    "McqReview",
    "PracticeQuestion",
    "SectionStatus",
    "Workspace",
    # AI results
    "SectionDescriptor",
    # API schemas
    "WorkspaceListResponse",
    "HealthCheckResponse",
]
