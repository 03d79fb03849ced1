"""
Shared fixtures for DeepTutor backend tests.

The store runs on in-memory storage and the AI capabilities are replaced by
``FakeTutorAI`` so no test leaves the process.  The HTTP client is an httpx
AsyncClient wired to the FastAPI app with the service dependencies overridden.
"""
from __future__ import annotations

import asyncio
import base64
from typing import AsyncGenerator, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from deeptutor.database import InMemoryStorage
from deeptutor.dependencies.services import get_ai_service, get_orchestrator, get_store
from deeptutor.main import app
from deeptutor.models.schemas import (
    AxiomPair,
    CoreResult,
    CourseSection,
    DefinitionPair,
    FileAttachment,
    LogicResult,
    McqReview,
    PracticeQuestion,
    RawFlashcard,
    RawQuestion,
    RecallResult,
    ResourceResult,
    SectionDescriptor,
    Workspace,
)
from deeptutor.routers.proxy import get_gemini_client
from deeptutor.services.enrichment import EnrichmentOrchestrator
from deeptutor.services.errors import AIServiceError
from deeptutor.services.gemini import GeminiClient
from deeptutor.services.initialization import build_workspace
from deeptutor.services.store import WorkspaceStore


# ---------------------------------------------------------------------------
# Fake AI capabilities
# ---------------------------------------------------------------------------

class FakeTutorAI:
    """
    Stand-in for TutorAIService with canned results.

    Put an exception in ``failures[<capability>]`` to make that call fail, or
    set ``gate`` to hold every call until the event is set.
    """

    def __init__(self) -> None:
        self.structure: List[SectionDescriptor] = [
            SectionDescriptor(title="Cell Biology", summary="Cells and organelles"),
            SectionDescriptor(title="Genetics", dependencies=["Cell Biology"]),
            SectionDescriptor(title="Evolution", source_range="pp. 40-52"),
        ]
        self.core = CoreResult(
            content="# Cells\nThe cell is the basic unit of life.",
            summary="Cells are the unit of life.",
            definitions=[DefinitionPair(term="Organelle", definition="A specialised subunit")],
            axioms=[AxiomPair(expression="SA:V = 6/L", label="Surface area to volume")],
        )
        self.logic = LogicResult(mindmap="mindmap\n  root((Cells))\n    Organelles")
        self.recall = RecallResult(
            flashcards=[
                RawFlashcard(question="What is a cell?", answer="The unit of life"),
                RawFlashcard(question="Name an organelle", answer="Mitochondrion"),
            ],
            questions=[
                RawQuestion(
                    question="Which organelle makes ATP?",
                    options=["Nucleus", "Mitochondrion", "Ribosome", "Golgi"],
                    correct_index=1,
                ),
                RawQuestion(question="Cells were first observed by?", correct_index=0),
            ],
        )
        self.resources = [
            ResourceResult(title="Khan Academy: Cells", url="https://www.khanacademy.org/cells"),
        ]
        self.failures: Dict[str, Exception] = {}
        self.calls: List[str] = []
        self.gate: Optional[asyncio.Event] = None

    async def _enter(self, name: str) -> None:
        self.calls.append(name)
        if self.gate is not None:
            await self.gate.wait()
        if name in self.failures:
            raise self.failures[name]

    async def extract_structure(self, attachment):
        await self._enter("extract_structure")
        return list(self.structure)

    async def generate_core(self, section, attachment):
        await self._enter("generate_core")
        return self.core

    async def generate_logic(self, section, attachment):
        await self._enter("generate_logic")
        return self.logic

    async def generate_recall(self, section, attachment):
        await self._enter("generate_recall")
        return self.recall

    async def generate_resources(self, section):
        await self._enter("generate_resources")
        return list(self.resources)

    async def evaluate_response(self, question: PracticeQuestion, chosen_index, section, attachment):
        await self._enter("evaluate_response")
        correct = chosen_index == question.correct_index
        return McqReview(
            is_correct=correct,
            verdict="Correct" if correct else "Misconception",
            why_user_choice_is_correct_or_wrong="Because of the reading.",
            correct_answer_explanation="Mitochondria produce ATP.",
            misconception_detected="None" if correct else "Confused nucleus with mitochondrion",
            concepts_to_review=[] if correct else ["Cellular respiration"],
            exam_tip="Link each organelle to its function.",
        )


def stage_failure(message: str = "HTTP 500: upstream exploded") -> AIServiceError:
    return AIServiceError(message, code="GENERATION_FAILED")


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def make_attachment(name: str = "biology_notes.pdf", data: bytes = b"%PDF-1.4 fake") -> FileAttachment:
    return FileAttachment(
        data=base64.b64encode(data).decode("ascii"),
        mime_type="application/pdf",
        name=name,
    )


def make_workspace(titles: Optional[List[str]] = None, name: str = "biology_notes.pdf") -> Workspace:
    titles = titles if titles is not None else ["Cell Biology", "Genetics", "Evolution"]
    return build_workspace(
        make_attachment(name),
        [SectionDescriptor(title=t) for t in titles],
    )


def section_with(section: CourseSection, **updates) -> CourseSection:
    return section.model_copy(update=updates)


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def store(storage: InMemoryStorage) -> WorkspaceStore:
    return WorkspaceStore(storage, storage_key="test-storage")


@pytest.fixture
def fake_ai() -> FakeTutorAI:
    return FakeTutorAI()


@pytest.fixture
def orchestrator(store: WorkspaceStore, fake_ai: FakeTutorAI) -> EnrichmentOrchestrator:
    return EnrichmentOrchestrator(store, fake_ai)


@pytest.fixture
def gemini_handler():
    """Upstream Gemini stub; tests may replace ``responses`` or inspect ``requests``."""

    class _Handler:
        def __init__(self) -> None:
            self.requests: List[httpx.Request] = []
            self.response = httpx.Response(
                200,
                json={"candidates": [{"content": {"parts": [{"text": '{"ok": true}'}]}}]},
            )

        def __call__(self, request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return self.response

    return _Handler()


@pytest_asyncio.fixture
async def client(
    store: WorkspaceStore,
    fake_ai: FakeTutorAI,
    orchestrator: EnrichmentOrchestrator,
    gemini_handler,
) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient wired to the FastAPI app with the store, AI service,
    orchestrator and upstream Gemini client overridden.
    """
    gemini = GeminiClient(api_key="test-key", transport=httpx.MockTransport(gemini_handler))

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_ai_service] = lambda: fake_ai
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_gemini_client] = lambda: gemini

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await orchestrator.wait_all()
    app.dependency_overrides.clear()
