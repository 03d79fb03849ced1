"""
Thin AI proxy: the only place that holds the Gemini credential.

Accepts ``{model, contents, config}`` by POST and answers ``{"text": ...}`` or
a structured ``{"error", "message"}`` body.
"""
from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from deeptutor.models.schemas import ProxyRequest
from deeptutor.services.gemini import GeminiClient

logger = logging.getLogger(__name__)

router = APIRouter()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


def get_gemini_client(request: Request) -> GeminiClient:
    return request.app.state.gemini


def _error(status_code: int, error: str, message: str = "") -> JSONResponse:
    content = {"error": error}
    if message:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content, headers=CORS_HEADERS)


@router.api_route(
    "/proxy",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    include_in_schema=False,
)
async def ai_proxy(request: Request, gemini: GeminiClient = Depends(get_gemini_client)) -> Response:
    if request.method == "OPTIONS":
        return Response(status_code=status.HTTP_204_NO_CONTENT, headers=CORS_HEADERS)

    if request.method != "POST":
        return _error(status.HTTP_405_METHOD_NOT_ALLOWED, "Method Not Allowed")

    try:
        raw = await request.body()
        body = ProxyRequest.model_validate(json.loads(raw or b"{}"))
    except (ValueError, ValidationError) as exc:
        return _error(status.HTTP_400_BAD_REQUEST, "INVALID_REQUEST", str(exc)[:200])

    if not gemini.configured:
        logger.error("Critical: GEMINI_API_KEY is missing in the server environment.")
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "API_KEY_MISSING_ON_SERVER",
            "Set GEMINI_API_KEY in the server environment variables",
        )

    try:
        text = await gemini.generate_content(body.model, body.contents, body.config)
    except Exception as exc:
        logger.error("AI proxy error: %s", exc, exc_info=True)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "GENERATION_FAILED",
            str(exc) or "Unknown error during generation",
        )

    return JSONResponse(status_code=status.HTTP_200_OK, content={"text": text}, headers=CORS_HEADERS)
