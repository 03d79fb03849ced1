"""
Client for the generative-AI capabilities the tutor relies on.

Every capability builds a Gemini ``contents`` payload (the prompt plus, where
the source document matters, the attachment as ``inlineData``) and a
generation ``config``, posts ``{model, contents, config}`` to the AI proxy and
parses the JSON text it returns into a typed result.  Missing fields are
filled by the result types in ``deeptutor.models.schemas``.

Public API
----------
TutorAIService.extract_structure(attachment)                        -> List[SectionDescriptor]
TutorAIService.generate_core(section, attachment)                   -> CoreResult
TutorAIService.generate_logic(section, attachment)                  -> LogicResult
TutorAIService.generate_recall(section, attachment)                 -> RecallResult
TutorAIService.generate_resources(section)                          -> List[ResourceResult]
TutorAIService.evaluate_response(question, idx, section, attachment) -> McqReview
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from deeptutor.config import settings
from deeptutor.models.schemas import (
    CoreResult,
    CourseSection,
    FileAttachment,
    LogicResult,
    McqReview,
    PracticeQuestion,
    RecallResult,
    ResourceResult,
    SectionDescriptor,
)
from deeptutor.services.errors import AIServiceError, StructureExtractionError
from deeptutor.utils.helpers import parse_json_loose, truncate_text

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", bound=BaseModel)


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

_STRUCTURE_PROMPT = """\
You are an expert curriculum designer. Read the attached document and split it
into the logical study units a student should learn, in teaching order.

For each unit provide:
1. title: A short, specific title
2. summary: One or two sentences on what the unit covers
3. sourceRange: Where in the document the unit comes from (pages, slides or headings)
4. dependencies: Titles of earlier units that must be understood first

Return between 3 and 12 units.

Respond ONLY with a valid JSON array. No explanation, no markdown:
[{{"title": "...", "summary": "...", "sourceRange": "...", "dependencies": ["..."]}}]\
"""

_CORE_PROMPT = """\
You are an elite tutor. Using the attached document as the only source, teach
the unit titled "{title}".

Unit overview: {summary}
Source location: {source_reference}

Provide:
1. content: A thorough markdown explanation of the unit
2. summary: A concise recap (3-5 sentences)
3. definitions: The key terms of the unit with precise definitions
4. axioms: Formulas, laws or rules stated in the unit, each with a short label

Respond ONLY with valid JSON. No markdown fences:
{{"content": "...", "summary": "...", "definitions": [{{"term": "...", "definition": "..."}}], \
"axioms": [{{"expression": "...", "label": "..."}}]}}\
"""

_LOGIC_PROMPT = """\
Build a mind map for the unit titled "{title}" from the attached document.

Unit overview: {summary}

Express the mind map as Mermaid "mindmap" syntax with the unit title as the root.

Respond ONLY with valid JSON:
{{"mindmap": "mindmap\\n  root((...))\\n    ..."}}\
"""

_RECALL_PROMPT = """\
Create active-recall material for the unit titled "{title}" using the attached
document.

Unit overview: {summary}

Provide:
1. flashcards: 6-10 question/answer pairs testing the key ideas
2. questions: 4-6 multiple-choice questions, each with exactly four options,
   the zero-based correctIndex of the right option and a one-line explanation

Respond ONLY with valid JSON:
{{"flashcards": [{{"question": "...", "answer": "..."}}], \
"questions": [{{"question": "...", "options": ["...", "...", "...", "..."], "correctIndex": 0, "explanation": "..."}}]}}\
"""

_RESOURCES_PROMPT = """\
Recommend high-quality external learning resources for the topic "{title}".

Topic overview: {summary}

Prefer official documentation, university course pages, reputable videos and
well-known textbooks. Provide 3-6 resources with a title, a full URL, a type
(article, video, course, book or documentation) and a one-line description.

Respond ONLY with a valid JSON array:
[{{"title": "...", "url": "https://...", "type": "article", "description": "..."}}]\
"""

_EVALUATION_PROMPT = """\
You are a strict but supportive examiner. A student answered a multiple-choice
question about the unit "{title}" of the attached document.

Question: {question}
Options:
{options}
Correct option: {correct_label}
Student's choice: {chosen_label}

Diagnose the student's reasoning. Provide:
1. isCorrect: whether the student's choice is the correct option
2. verdict: One or two words (e.g. "Correct", "Partially understood", "Misconception")
3. whyUserChoiceIsCorrectOrWrong: Why the chosen option is right or wrong
4. correctAnswerExplanation: Why the correct option is correct, citing the document
5. misconceptionDetected: The underlying misconception, or "None"
6. conceptsToReview: Short names of concepts to revisit
7. examTip: One practical exam tip

Respond ONLY with valid JSON:
{{"isCorrect": true, "verdict": "...", "whyUserChoiceIsCorrectOrWrong": "...", \
"correctAnswerExplanation": "...", "misconceptionDetected": "...", \
"conceptsToReview": ["..."], "examTip": "..."}}\
"""


def _option_label(index: int) -> str:
    return chr(65 + index) if 0 <= index < 26 else str(index)


# ---------------------------------------------------------------------------
# Main service class
# ---------------------------------------------------------------------------

class TutorAIService:
    """
    Generative-AI capabilities via the AI proxy.

    Limits concurrency to MAX_CONCURRENT simultaneous model calls.  Transport
    failures, proxy errors and unparseable output raise ``AIServiceError``.
    """

    MAX_CONCURRENT: int = 4
    MAX_JSON_RETRIES: int = 2

    STRUCTURE_PROMPT = _STRUCTURE_PROMPT
    CORE_PROMPT = _CORE_PROMPT
    LOGIC_PROMPT = _LOGIC_PROMPT
    RECALL_PROMPT = _RECALL_PROMPT
    RESOURCES_PROMPT = _RESOURCES_PROMPT
    EVALUATION_PROMPT = _EVALUATION_PROMPT

    def __init__(
        self,
        proxy_url: Optional[str] = None,
        model: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.proxy_url = proxy_url or settings.AI_PROXY_URL
        self.model = model or settings.GEMINI_MODEL
        self.timeout = httpx.Timeout(float(settings.AI_TIMEOUT), connect=10.0)
        self._transport = transport
        self._semaphore = asyncio.Semaphore(self.MAX_CONCURRENT)

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    async def extract_structure(self, attachment: FileAttachment) -> List[SectionDescriptor]:
        """
        Ask the model for the ordered curriculum units of *attachment*.

        Raises StructureExtractionError when the result is not a non-empty
        list of unit descriptors.
        """
        raw = await self._generate_json(self.STRUCTURE_PROMPT, attachment)

        if isinstance(raw, dict) and isinstance(raw.get("sections"), list):
            raw = raw["sections"]
        if not isinstance(raw, list) or not raw:
            raise StructureExtractionError(
                "STRUCTURE_PROTOCOL_FAILURE: Could not extract logical units. "
                "Is the document empty?"
            )

        descriptors: List[SectionDescriptor] = []
        for item in raw:
            if isinstance(item, str):
                item = {"title": item}
            if not isinstance(item, dict):
                continue
            try:
                descriptors.append(SectionDescriptor.model_validate(item))
            except ValidationError as exc:
                logger.warning("extract_structure: skipping malformed unit: %s", exc)

        if not descriptors:
            raise StructureExtractionError(
                "STRUCTURE_PROTOCOL_FAILURE: No usable units in the model response."
            )
        logger.info("extract_structure: %d unit(s) from %r", len(descriptors), attachment.name)
        return descriptors

    async def generate_core(self, section: CourseSection, attachment: FileAttachment) -> CoreResult:
        prompt = self.CORE_PROMPT.format(
            title=section.title,
            summary=section.summary or "n/a",
            source_reference=section.source_reference or "n/a",
        )
        raw = await self._generate_json(prompt, attachment)
        return self._to_result(CoreResult, raw, "generate_core")

    async def generate_logic(self, section: CourseSection, attachment: FileAttachment) -> LogicResult:
        prompt = self.LOGIC_PROMPT.format(title=section.title, summary=section.summary or "n/a")
        raw = await self._generate_json(prompt, attachment)
        return self._to_result(LogicResult, raw, "generate_logic")

    async def generate_recall(self, section: CourseSection, attachment: FileAttachment) -> RecallResult:
        prompt = self.RECALL_PROMPT.format(title=section.title, summary=section.summary or "n/a")
        raw = await self._generate_json(prompt, attachment)
        return self._to_result(RecallResult, raw, "generate_recall")

    async def generate_resources(self, section: CourseSection) -> List[ResourceResult]:
        """Resource suggestions depend only on the section, not the document."""
        prompt = self.RESOURCES_PROMPT.format(title=section.title, summary=section.summary or "n/a")
        raw = await self._generate_json(prompt, None)

        if isinstance(raw, dict) and isinstance(raw.get("resources"), list):
            raw = raw["resources"]
        if not isinstance(raw, list):
            raise AIServiceError("Resource suggestions were not a list", code="INVALID_JSON")
        return [
            self._to_result(ResourceResult, item, "generate_resources")
            for item in raw
            if isinstance(item, dict)
        ]

    async def evaluate_response(
        self,
        question: PracticeQuestion,
        chosen_index: int,
        section: CourseSection,
        attachment: FileAttachment,
    ) -> McqReview:
        """Ask the model to grade *chosen_index* for *question* and explain why."""
        options = "\n".join(
            f"{_option_label(i)}. {opt}" for i, opt in enumerate(question.options)
        )
        prompt = self.EVALUATION_PROMPT.format(
            title=section.title,
            question=question.question,
            options=options,
            correct_label=_option_label(question.correct_index),
            chosen_label=_option_label(chosen_index),
        )
        raw = await self._generate_json(prompt, attachment)
        return self._to_result(McqReview, raw, "evaluate_response")

    # ------------------------------------------------------------------
    # Core model caller
    # ------------------------------------------------------------------

    def build_request(self, prompt: str, attachment: Optional[FileAttachment]) -> Dict[str, Any]:
        """Assemble the ``{model, contents, config}`` body the proxy expects."""
        parts: List[Dict[str, Any]] = []
        if attachment is not None:
            parts.append({"inlineData": {"mimeType": attachment.mime_type, "data": attachment.data}})
        parts.append({"text": prompt})
        return {
            "model": self.model,
            "contents": [{"role": "user", "parts": parts}],
            "config": {
                "responseMimeType": "application/json",
                "temperature": settings.AI_TEMPERATURE,
            },
        }

    async def _call_model(self, body: Dict[str, Any]) -> str:
        """POST *body* to the proxy and return the generated text."""
        async with self._semaphore:
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    resp = await client.post(self.proxy_url, json=body)
            except httpx.HTTPError as exc:
                logger.error("_call_model: transport error — %s", exc)
                raise AIServiceError(f"AI proxy unreachable: {exc}") from exc

        try:
            payload = resp.json()
        except ValueError:
            payload = {}

        if resp.status_code != 200:
            code = payload.get("error") if isinstance(payload, dict) else None
            message = payload.get("message") if isinstance(payload, dict) else None
            logger.error(
                "_call_model: proxy returned HTTP %d: %s",
                resp.status_code,
                truncate_text(resp.text, 300),
            )
            raise AIServiceError(
                f"{code or 'HTTP_' + str(resp.status_code)}: {message or resp.text[:200]}",
                code=code,
            )

        text = payload.get("text") if isinstance(payload, dict) else None
        if not text:
            raise AIServiceError("Empty response from the AI proxy", code="GENERATION_FAILED")
        return text

    async def _generate_json(self, prompt: str, attachment: Optional[FileAttachment]) -> Any:
        """
        Call the model and parse its output as JSON.

        A response that cannot be parsed is retried up to MAX_JSON_RETRIES
        times in total; transport errors are not retried.
        """
        body = self.build_request(prompt, attachment)
        for attempt in range(1, self.MAX_JSON_RETRIES + 1):
            text = await self._call_model(body)
            success, parsed = parse_json_loose(text)
            if success:
                if attempt > 1:
                    logger.info("_generate_json: JSON parsed on attempt %d", attempt)
                return parsed
            logger.warning(
                "_generate_json: JSON parse failed on attempt %d/%d",
                attempt,
                self.MAX_JSON_RETRIES,
            )
        raise AIServiceError("The model returned unparseable JSON", code="INVALID_JSON")

    @staticmethod
    def _to_result(model: Type[ResultT], raw: Any, capability: str) -> ResultT:
        if not isinstance(raw, dict):
            raise AIServiceError(f"{capability}: expected a JSON object", code="INVALID_JSON")
        try:
            return model.model_validate(raw)
        except ValidationError as exc:
            logger.error("%s: response failed validation: %s", capability, exc)
            raise AIServiceError(f"{capability}: invalid response shape", code="INVALID_JSON") from exc
