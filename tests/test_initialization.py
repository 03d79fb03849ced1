"""Tests for turning an attachment into a workspace skeleton."""
import pytest

from deeptutor.models.schemas import FileType, SectionDescriptor, SectionStatus
from deeptutor.services.errors import StructureExtractionError
from deeptutor.services.initialization import build_workspace, initialize_workspace
from deeptutor.utils.helpers import infer_file_type, strip_extension

from tests.conftest import FakeTutorAI, make_attachment


@pytest.mark.asyncio
async def test_three_section_skeleton(fake_ai: FakeTutorAI):
    ws = await initialize_workspace(make_attachment("biology_notes.pdf"), fake_ai)

    assert [s.status for s in ws.sections] == [
        SectionStatus.IN_PROGRESS,
        SectionStatus.LOCKED,
        SectionStatus.LOCKED,
    ]
    assert ws.active_section_index == 0
    assert ws.subject == "biology_notes"
    assert ws.file_info.type == FileType.PDF
    assert ws.attachment.name == "biology_notes.pdf"
    assert ws.coverage_stats.ingested == 0


@pytest.mark.asyncio
async def test_sections_start_empty_with_descriptor_metadata(fake_ai: FakeTutorAI):
    ws = await initialize_workspace(make_attachment(), fake_ai)

    first, second, third = ws.sections
    assert first.summary == "Cells and organelles"
    assert second.dependencies == ["Cell Biology"]
    assert third.source_reference == "pp. 40-52"
    for section in ws.sections:
        assert section.mastery == 0
        assert section.content == ""
        assert section.flashcards == []
        assert section.practice_questions == []
        assert not section.is_loading
    assert len({s.id for s in ws.sections}) == 3


@pytest.mark.asyncio
async def test_empty_structure_fails(fake_ai: FakeTutorAI):
    fake_ai.structure = []
    with pytest.raises(StructureExtractionError):
        await initialize_workspace(make_attachment(), fake_ai)


@pytest.mark.asyncio
async def test_extraction_error_propagates(fake_ai: FakeTutorAI):
    fake_ai.failures["extract_structure"] = StructureExtractionError("empty")
    with pytest.raises(StructureExtractionError):
        await initialize_workspace(make_attachment(), fake_ai)


def test_missing_title_gets_placeholder():
    ws = build_workspace(
        make_attachment(),
        [SectionDescriptor.model_validate({"title": None}), SectionDescriptor.model_validate({})],
    )
    assert [s.title for s in ws.sections] == ["Untitled Unit", "Untitled Unit"]


def test_workspace_ids_are_unique():
    a = build_workspace(make_attachment(), [SectionDescriptor(title="x")])
    b = build_workspace(make_attachment(), [SectionDescriptor(title="x")])
    assert a.file_info.id != b.file_info.id


@pytest.mark.parametrize(
    "filename, expected",
    [
        ("slides.PPTX", "ppt"),
        ("deck.ppt", "ppt"),
        ("paper.pdf", "pdf"),
        ("notes.txt", "txt"),
        ("README", "txt"),
    ],
)
def test_infer_file_type(filename, expected):
    assert infer_file_type(filename) == expected


def test_strip_extension_only_removes_last():
    assert strip_extension("lecture.week1.pdf") == "lecture.week1"
    assert strip_extension("no_extension") == "no_extension"
