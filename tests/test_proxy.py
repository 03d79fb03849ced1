"""Tests for the /api/ai/proxy endpoint and the upstream Gemini client."""
import json

import httpx
import pytest
from httpx import AsyncClient

from deeptutor.main import app
from deeptutor.routers.proxy import get_gemini_client
from deeptutor.services.gemini import GeminiClient, build_generate_body, extract_text

PROXY = "/api/ai/proxy"

BODY = {
    "model": "gemini-test",
    "contents": [{"role": "user", "parts": [{"text": "Say hi"}]}],
    "config": {"responseMimeType": "application/json", "systemInstruction": "Be brief"},
}


@pytest.mark.asyncio
async def test_successful_generation_returns_text(client: AsyncClient, gemini_handler):
    resp = await client.post(PROXY, json=BODY)

    assert resp.status_code == 200
    assert resp.json() == {"text": '{"ok": true}'}
    assert resp.headers["Access-Control-Allow-Origin"] == "*"

    upstream = gemini_handler.requests[0]
    assert upstream.url.path.endswith("/models/gemini-test:generateContent")
    assert upstream.headers["x-goog-api-key"] == "test-key"
    sent = json.loads(upstream.content)
    assert sent["generationConfig"] == {"responseMimeType": "application/json"}
    assert sent["systemInstruction"] == {"parts": [{"text": "Be brief"}]}


@pytest.mark.asyncio
async def test_preflight_returns_204(client: AsyncClient):
    resp = await client.options(PROXY)
    assert resp.status_code == 204
    assert "POST" in resp.headers["Access-Control-Allow-Methods"]


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["GET", "PUT", "DELETE"])
async def test_other_methods_are_rejected(client: AsyncClient, method):
    resp = await client.request(method, PROXY)
    assert resp.status_code == 405
    assert resp.json() == {"error": "Method Not Allowed"}


@pytest.mark.asyncio
async def test_missing_key_is_reported(client: AsyncClient, gemini_handler):
    app.dependency_overrides[get_gemini_client] = lambda: GeminiClient(
        api_key="", transport=httpx.MockTransport(gemini_handler)
    )

    resp = await client.post(PROXY, json=BODY)

    assert resp.status_code == 500
    assert resp.json()["error"] == "API_KEY_MISSING_ON_SERVER"
    assert gemini_handler.requests == []


@pytest.mark.asyncio
async def test_upstream_failure_is_generation_failed(client: AsyncClient, gemini_handler):
    gemini_handler.response = httpx.Response(
        429, json={"error": {"status": "RESOURCE_EXHAUSTED", "message": "Quota exceeded"}}
    )

    resp = await client.post(PROXY, json=BODY)

    assert resp.status_code == 500
    data = resp.json()
    assert data["error"] == "GENERATION_FAILED"
    assert "RESOURCE_EXHAUSTED" in data["message"]


@pytest.mark.asyncio
async def test_empty_generation_is_generation_failed(client: AsyncClient, gemini_handler):
    gemini_handler.response = httpx.Response(200, json={"candidates": []})
    resp = await client.post(PROXY, json=BODY)
    assert resp.status_code == 500
    assert resp.json()["error"] == "GENERATION_FAILED"


@pytest.mark.asyncio
async def test_malformed_body_is_rejected(client: AsyncClient):
    resp = await client.post(PROXY, content=b"{not json", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "INVALID_REQUEST"


def test_string_contents_are_wrapped():
    body = build_generate_body("hello", None)
    assert body == {"contents": [{"role": "user", "parts": [{"text": "hello"}]}]}


def test_thought_parts_are_skipped():
    payload = {
        "candidates": [
            {"content": {"parts": [{"text": "thinking...", "thought": True}, {"text": "answer"}]}}
        ]
    }
    assert extract_text(payload) == "answer"
