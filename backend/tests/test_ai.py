# tests/test_ai.py — Model client, JSON cleanup, AI endpoints
import json

import httpx
import pytest
from fastapi import HTTPException
from httpx import AsyncClient

from ai_engine import AIService, GeminiClient, clean_json, get_ai_service
from main import app
from tests.conftest import make_token


def _gemini_reply(text: str) -> dict:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


class FakeGemini:
    """MockTransport handler that records prompts and answers with a canned reply"""

    def __init__(self, text: str = "{}", status_code: int = 200):
        self.text = text
        self.status_code = status_code
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=_gemini_reply(self.text))

    @property
    def prompts(self):
        return [json.loads(r.content)["contents"][0]["parts"][0]["text"] for r in self.requests]


def _service(fake: FakeGemini, api_key: str = "test-key") -> AIService:
    return AIService(GeminiClient(api_key=api_key, transport=httpx.MockTransport(fake)))


@pytest.fixture
def fake_gemini():
    fake = FakeGemini()
    app.dependency_overrides[get_ai_service] = lambda: _service(fake)
    yield fake
    app.dependency_overrides.pop(get_ai_service, None)


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {make_token('auth0|ai-user', email='ai@taskrythm.dev')}"}


class TestCleanJson:

    def test_fenced(self):
        assert clean_json('```json\n{"tasks": []}\n```') == {"tasks": []}

    def test_plain(self):
        assert clean_json('  {"answer": "yes"} ') == {"answer": "yes"}

    def test_invalid_is_500(self):
        with pytest.raises(HTTPException) as exc:
            clean_json("Sure! Here is your plan:")
        assert exc.value.status_code == 500
        assert exc.value.detail == "AI returned invalid data format"


class TestGeminiClient:

    @pytest.mark.asyncio
    async def test_request_shape(self):
        fake = FakeGemini('{"ok": true}')
        client = GeminiClient(api_key="secret", model="gemini-test", base_url="https://ai.test/v1", transport=httpx.MockTransport(fake))
        text = await client.generate("hello")

        assert text == '{"ok": true}'
        request = fake.requests[0]
        assert str(request.url) == "https://ai.test/v1/models/gemini-test:generateContent"
        assert request.headers["x-goog-api-key"] == "secret"
        assert fake.prompts == ["hello"]

    @pytest.mark.asyncio
    async def test_no_candidates(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"candidates": []}))
        client = GeminiClient(api_key="secret", transport=transport)
        with pytest.raises(ValueError):
            await client.generate("hello")


class TestAIService:

    @pytest.mark.asyncio
    async def test_not_configured(self):
        fake = FakeGemini()
        with pytest.raises(HTTPException) as exc:
            await _service(fake, api_key="").refine_task("fix bug")
        assert exc.value.status_code == 500
        assert exc.value.detail == "AI service is not configured"
        assert fake.requests == []

    @pytest.mark.asyncio
    async def test_upstream_error_maps_to_feature_message(self):
        fake = FakeGemini(status_code=503)
        with pytest.raises(HTTPException) as exc:
            await _service(fake).analyze_project_health([{"title": "A", "status": "TODO", "priority": "HIGH"}])
        assert exc.value.status_code == 500
        assert exc.value.detail == "Failed to analyze project"

    @pytest.mark.asyncio
    async def test_prompt_lists_tasks(self):
        fake = FakeGemini('{"versionTitle": "v1"}')
        result = await _service(fake).write_release_notes([{"title": "Dark mode", "tag": "feature"}])
        assert result == {"versionTitle": "v1"}
        assert "- Dark mode [feature]" in fake.prompts[0]


class TestAIEndpoints:

    @pytest.mark.asyncio
    async def test_generate_plan(self, client: AsyncClient, fake_gemini, auth_headers):
        fake_gemini.text = '```json\n{"tasks": [{"title": "Set up repo", "priority": "HIGH"}]}\n```'
        resp = await client.post("/ai/generate-plan", json={"prompt": "Launch a blog"}, headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json() == {"tasks": [{"title": "Set up repo", "priority": "HIGH"}]}
        assert "Launch a blog" in fake_gemini.prompts[0]

    @pytest.mark.asyncio
    async def test_refine_task(self, client: AsyncClient, fake_gemini, auth_headers):
        fake_gemini.text = '{"suggestedTitle": "Fix login redirect", "subtasks": ["Reproduce"]}'
        resp = await client.post("/ai/refine-task", json={"taskTitle": "login broken"}, headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["suggestedTitle"] == "Fix login redirect"

    @pytest.mark.asyncio
    async def test_analyze_project(self, client: AsyncClient, fake_gemini, auth_headers):
        fake_gemini.text = '{"score": 72, "status": "At Risk"}'
        resp = await client.post(
            "/ai/analyze-project",
            json={"tasks": [{"title": "API", "status": "BLOCKED", "priority": "CRITICAL"}]},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["score"] == 72
        assert "- API [BLOCKED, CRITICAL]" in fake_gemini.prompts[0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fenced", [False, True])
    async def test_write_report(self, client: AsyncClient, fake_gemini, auth_headers, fenced):
        notes = '{"versionTitle": "Spring", "executiveSummary": "s", "markdownContent": "# Notes"}'
        fake_gemini.text = f"```json\n{notes}\n```" if fenced else notes
        resp = await client.post(
            "/ai/write-report", json={"tasks": [{"title": "Export CSV", "tag": "feature"}]}, headers=auth_headers
        )
        assert resp.status_code == 200
        assert resp.json() == json.loads(notes)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fenced", [False, True])
    async def test_chat(self, client: AsyncClient, fake_gemini, auth_headers, fenced):
        answer = '{"answer": "Two tasks are blocked."}'
        fake_gemini.text = f"```json\n{answer}\n```" if fenced else answer
        resp = await client.post(
            "/ai/chat",
            json={"question": "What is blocked?", "tasks": [{"title": "API", "status": "BLOCKED"}]},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        assert resp.json() == {"answer": "Two tasks are blocked."}

    @pytest.mark.asyncio
    async def test_long_title_never_reaches_model(self, client: AsyncClient, fake_gemini, auth_headers):
        resp = await client.post("/ai/refine-task", json={"taskTitle": "x" * 101}, headers=auth_headers)
        assert resp.status_code == 400
        assert fake_gemini.requests == []

    @pytest.mark.asyncio
    async def test_short_prompt_is_400(self, client: AsyncClient, fake_gemini, auth_headers):
        resp = await client.post("/ai/generate-plan", json={"prompt": "hi"}, headers=auth_headers)
        assert resp.status_code == 400
        assert fake_gemini.requests == []

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client: AsyncClient, fake_gemini):
        resp = await client.post("/ai/generate-plan", json={"prompt": "Launch a blog"})
        assert resp.status_code == 401
        assert fake_gemini.requests == []

    @pytest.mark.asyncio
    async def test_non_json_reply_is_500(self, client: AsyncClient, fake_gemini, auth_headers):
        fake_gemini.text = "I could not do that."
        resp = await client.post("/ai/refine-task", json={"taskTitle": "login broken"}, headers=auth_headers)
        assert resp.status_code == 500
        assert resp.json()["message"] == "AI returned invalid data format"
