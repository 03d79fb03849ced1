"""
Initialization flow: turn an uploaded attachment into a workspace skeleton.

One external round trip (structure extraction) followed by a pure
transformation.  Either the whole workspace is produced or an error is raised
and nothing reaches the store.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from deeptutor.models.schemas import (
    CourseSection,
    CoverageStats,
    FileAttachment,
    FileInfo,
    FileType,
    SectionDescriptor,
    SectionStatus,
    Workspace,
)
from deeptutor.services.errors import StructureExtractionError
from deeptutor.services.tutor_ai import TutorAIService
from deeptutor.utils.helpers import generate_id, infer_file_type, strip_extension, utc_now_iso

logger = logging.getLogger(__name__)


def build_section_skeletons(descriptors: Sequence[SectionDescriptor]) -> List[CourseSection]:
    """Map raw unit descriptors to empty sections; only the first is unlocked."""
    return [
        CourseSection(
            id=generate_id(),
            title=d.title or "Untitled Unit",
            status=SectionStatus.IN_PROGRESS if idx == 0 else SectionStatus.LOCKED,
            mastery=0,
            summary=d.summary or "",
            source_reference=d.source_range or d.source_reference or "",
            dependencies=list(d.dependencies),
        )
        for idx, d in enumerate(descriptors)
    ]


def build_workspace(
    attachment: FileAttachment,
    descriptors: Sequence[SectionDescriptor],
    *,
    workspace_id: Optional[str] = None,
) -> Workspace:
    """Assemble a new workspace for *attachment* from its unit descriptors."""
    if not descriptors:
        raise StructureExtractionError(
            "STRUCTURE_PROTOCOL_FAILURE: Could not extract logical units. Is the document empty?"
        )

    return Workspace(
        file_info=FileInfo(
            id=workspace_id or generate_id(),
            name=attachment.name,
            type=FileType(infer_file_type(attachment.name)),
            upload_date=utc_now_iso(),
        ),
        subject=strip_extension(attachment.name),
        sections=build_section_skeletons(descriptors),
        active_section_index=0,
        attachment=attachment,
        coverage_stats=CoverageStats(),
    )


async def initialize_workspace(attachment: FileAttachment, ai: TutorAIService) -> Workspace:
    """
    Extract the document structure and build the workspace skeleton.

    Raises StructureExtractionError (empty / invalid skeleton) or
    AIServiceError (transport); the store is never touched here.
    """
    logger.info("initialize_workspace: parsing %r (%s)", attachment.name, attachment.mime_type)
    descriptors = await ai.extract_structure(attachment)
    if not isinstance(descriptors, (list, tuple)):
        raise StructureExtractionError(
            "STRUCTURE_PROTOCOL_FAILURE: structure extraction did not return a sequence."
        )

    workspace = build_workspace(attachment, descriptors)
    logger.info(
        "initialize_workspace: workspace %s with %d section(s)",
        workspace.file_info.id,
        len(workspace.sections),
    )
    return workspace
