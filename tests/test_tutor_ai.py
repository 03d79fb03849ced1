"""Tests for the AI capability client and lenient JSON parsing."""
import json

import httpx
import pytest

from deeptutor.models.schemas import CourseSection, PracticeQuestion, SectionStatus
from deeptutor.services.errors import AIServiceError, StructureExtractionError, handle_ai_error
from deeptutor.services.tutor_ai import TutorAIService
from deeptutor.utils.helpers import parse_json_loose

from tests.conftest import make_attachment


class ProxyStub:
    """Answers every proxy call with the next queued (status, body) pair."""

    def __init__(self, *replies) -> None:
        self.replies = list(replies)
        self.bodies = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.bodies.append(json.loads(request.content))
        status, body = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        return httpx.Response(status, json=body)


def _service(*replies) -> tuple:
    stub = ProxyStub(*replies)
    service = TutorAIService(
        proxy_url="http://proxy.test/api/ai/proxy",
        model="test-model",
        transport=httpx.MockTransport(stub),
    )
    return service, stub


def _text(payload) -> tuple:
    return 200, {"text": payload if isinstance(payload, str) else json.dumps(payload)}


def _section(**kwargs) -> CourseSection:
    defaults = dict(id="s1", title="Genetics", status=SectionStatus.IN_PROGRESS, summary="Genes")
    defaults.update(kwargs)
    return CourseSection(**defaults)


# ---------------------------------------------------------------------------
# parse_json_loose
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "raw, expected",
    [
        ('{"a": 1}', {"a": 1}),
        ('```json\n{"a": [1, 2,]}\n```', {"a": [1, 2]}),
        ('Here you go: {"a": {"b": [1]}} hope it helps', {"a": {"b": [1]}}),
        ('[{"title": "x"}', [{"title": "x"}]),
        ('{"ok": True, "none": None}', {"ok": True, "none": None}),
        ('{"url": "https://example.com/a"}', {"url": "https://example.com/a"}),
    ],
)
def test_parse_json_loose_recovers(raw, expected):
    assert parse_json_loose(raw) == (True, expected)


def test_literal_repair_leaves_string_values_alone():
    raw = '{"q": "True or False? None, ]", "ok": True, "x": None,}'
    assert parse_json_loose(raw) == (True, {"q": "True or False? None, ]", "ok": True, "x": None})
    assert parse_json_loose('{"q": "say \\"None\\"", "a": False}') == (
        True,
        {"q": 'say "None"', "a": False},
    )


def test_parse_json_loose_gives_up():
    assert parse_json_loose("not json at all") == (False, None)
    assert parse_json_loose("") == (False, None)


# ---------------------------------------------------------------------------
# Request shape
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_request_carries_attachment_and_json_config():
    service, stub = _service(_text({"mindmap": "mindmap\n  root((Genetics))"}))
    attachment = make_attachment()

    await service.generate_logic(_section(), attachment)

    body = stub.bodies[0]
    assert body["model"] == "test-model"
    parts = body["contents"][0]["parts"]
    assert parts[0]["inlineData"] == {"mimeType": "application/pdf", "data": attachment.data}
    assert "Genetics" in parts[1]["text"]
    assert body["config"]["responseMimeType"] == "application/json"


@pytest.mark.asyncio
async def test_resources_are_requested_without_the_document():
    service, stub = _service(_text({"resources": [{"title": "Intro", "url": "https://x.org"}]}))

    resources = await service.generate_resources(_section())

    assert [r.title for r in resources] == ["Intro"]
    assert [p for p in stub.bodies[0]["contents"][0]["parts"] if "inlineData" in p] == []


# ---------------------------------------------------------------------------
# Structure extraction
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_structure_fills_defaults():
    service, _ = _service(
        _text(
            '```json\n[{"title": "Cells", "sourceRange": 12, "dependencies": null},'
            ' {"title": "  "}, "Genetics"]\n```'
        )
    )

    units = await service.extract_structure(make_attachment())

    assert [u.title for u in units] == ["Cells", "Untitled Unit", "Genetics"]
    assert units[0].source_range == "12"
    assert units[0].dependencies == []


@pytest.mark.asyncio
async def test_structure_accepts_sections_wrapper():
    service, _ = _service(_text({"sections": [{"title": "Only"}]}))
    units = await service.extract_structure(make_attachment())
    assert [u.title for u in units] == ["Only"]


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [[], {"title": "not a list"}, [1, 2]])
async def test_structure_without_units_fails(payload):
    service, _ = _service(_text(payload))
    with pytest.raises(StructureExtractionError) as exc_info:
        await service.extract_structure(make_attachment())
    assert "logical units" in handle_ai_error(exc_info.value)


# ---------------------------------------------------------------------------
# Stage results
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_null_fields_fall_back_to_defaults():
    service, _ = _service(
        _text(
            {
                "flashcards": [{"question": "Q", "answer": None}],
                "questions": [{"question": "Pick one", "options": None, "correctIndex": None}],
            }
        )
    )

    recall = await service.generate_recall(_section(), make_attachment())

    assert recall.flashcards[0].answer == ""
    assert recall.questions[0].options == ["A", "B", "C", "D"]
    assert recall.questions[0].correct_index == 0


@pytest.mark.asyncio
async def test_numeric_recall_content_is_kept_as_text():
    service, _ = _service(
        _text(
            {
                "flashcards": [{"question": "2 + 2", "answer": 4}],
                "questions": [{"question": "2 + 2 = ?", "options": [3, 4, 5.5, True], "correctIndex": 1}],
            }
        )
    )

    recall = await service.generate_recall(_section(), make_attachment())

    assert recall.flashcards[0].answer == "4"
    assert recall.questions[0].options == ["3", "4", "5.5", "True"]
    assert recall.questions[0].correct_index == 1


@pytest.mark.asyncio
async def test_numeric_definitions_and_formulas_are_kept_as_text():
    service, _ = _service(
        _text(
            {
                "content": "Constants",
                "definitions": [{"term": "Avogadro", "definition": 6.022e23}],
                "axioms": [{"expression": 42, "label": None}],
            }
        )
    )

    core = await service.generate_core(_section(), make_attachment())

    assert core.definitions[0].definition == str(6.022e23)
    assert (core.axioms[0].expression, core.axioms[0].label) == ("42", "")


@pytest.mark.asyncio
async def test_object_mindmap_is_serialised():
    service, _ = _service(_text({"mindmap": {"root": "Genetics"}}))
    logic = await service.generate_logic(_section(), make_attachment())
    assert json.loads(logic.mindmap) == {"root": "Genetics"}


@pytest.mark.asyncio
async def test_evaluation_prompt_labels_options():
    service, stub = _service(_text({"isCorrect": False, "verdict": "Misconception"}))
    question = PracticeQuestion(id="q", question="Which?", options=["w", "x", "y", "z"], correct_index=2)

    review = await service.evaluate_response(question, 0, _section(), make_attachment())

    assert review.is_correct is False
    assert review.concepts_to_review == []
    prompt = stub.bodies[0]["contents"][0]["parts"][-1]["text"]
    assert "C. y" in prompt
    assert "Correct option: C" in prompt
    assert "Student's choice: A" in prompt


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_unparseable_output_is_retried_then_fails():
    service, stub = _service(_text("garbage"), _text("still garbage"))
    with pytest.raises(AIServiceError) as exc_info:
        await service.generate_core(_section(), make_attachment())
    assert exc_info.value.code == "INVALID_JSON"
    assert len(stub.bodies) == TutorAIService.MAX_JSON_RETRIES


@pytest.mark.asyncio
async def test_retry_recovers_on_second_attempt():
    service, stub = _service(_text("garbage"), _text({"content": "ok"}))
    core = await service.generate_core(_section(), make_attachment())
    assert core.content == "ok"
    assert core.definitions == []
    assert len(stub.bodies) == 2


@pytest.mark.asyncio
async def test_proxy_error_code_is_kept():
    service, _ = _service(
        (500, {"error": "API_KEY_MISSING_ON_SERVER", "message": "Set GEMINI_API_KEY"})
    )
    with pytest.raises(AIServiceError) as exc_info:
        await service.generate_core(_section(), make_attachment())
    assert exc_info.value.code == "API_KEY_MISSING_ON_SERVER"
    assert "not configured" in handle_ai_error(exc_info.value)


@pytest.mark.asyncio
async def test_unreachable_proxy_raises_service_error():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    service = TutorAIService(proxy_url="http://proxy.test", transport=httpx.MockTransport(refuse))
    with pytest.raises(AIServiceError) as exc_info:
        await service.generate_logic(_section(), make_attachment())
    assert "Could not reach" in handle_ai_error(exc_info.value.__cause__)


@pytest.mark.asyncio
async def test_non_object_stage_result_is_invalid():
    service, _ = _service(_text([1, 2, 3]))
    with pytest.raises(AIServiceError) as exc_info:
        await service.generate_core(_section(), make_attachment())
    assert exc_info.value.code == "INVALID_JSON"
