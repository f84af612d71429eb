# ai_engine.py — Generative-model conveniences for TaskRythm
# Every feature sends one prompt that demands raw JSON and hands the parsed
# reply back untouched. No retries: a failed call is one 500.

import os
import json
import logging
from typing import Any, Dict, List, Optional

import httpx
from fastapi import HTTPException

from telemetry import span

logger = logging.getLogger("taskrythm.ai")

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_BASE_URL = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")
AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", "60"))


def clean_json(text: str) -> Any:
    """Drop markdown code fences around a model reply and parse what is left."""
    clean_text = text.replace("```json", "").replace("```", "").strip()
    try:
        return json.loads(clean_text)
    except ValueError:
        logger.error(f"Failed to parse model reply as JSON: {text[:500]!r}")
        raise HTTPException(status_code=500, detail="AI returned invalid data format")


class GeminiClient:
    """generateContent over the Generative Language REST API"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = GEMINI_API_KEY if api_key is None else api_key
        self.model = model or GEMINI_MODEL
        self.base_url = (base_url or GEMINI_BASE_URL).rstrip("/")
        self.timeout = AI_TIMEOUT_SECONDS if timeout is None else timeout
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def generate(self, prompt: str) -> str:
        url = f"{self.base_url}/models/{self.model}:generateContent"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.post(
                url,
                headers={"x-goog-api-key": self.api_key, "Content-Type": "application/json"},
                json={"contents": [{"role": "user", "parts": [{"text": prompt}]}]},
            )
            resp.raise_for_status()
            data = resp.json()

        candidates = data.get("candidates") or []
        if not candidates:
            raise ValueError(f"model returned no candidates: {data.get('promptFeedback')}")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)


# --- Prompt helpers ---

def _task_lines(tasks: List[Dict[str, Any]]) -> str:
    if not tasks:
        return "(no tasks)"
    lines = []
    for task in tasks:
        details = ", ".join(
            str(task[key]) for key in ("status", "priority", "tag") if task.get(key)
        )
        lines.append(f"- {task.get('title', '')}" + (f" [{details}]" if details else ""))
    return "\n".join(lines)


class AIService:
    """Prompt templates over a GeminiClient"""

    def __init__(self, client: Optional[GeminiClient] = None):
        self.client = client or GeminiClient()

    async def _complete_json(self, prompt: str, failure_detail: str) -> Any:
        if not self.client.configured:
            logger.error("GEMINI_API_KEY is not set; AI request rejected")
            raise HTTPException(status_code=500, detail="AI service is not configured")

        try:
            with span("ai.generate", model=self.client.model):
                text = await self.client.generate(prompt)
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.error(f"Gemini request failed ({self.client.model}): {e}")
            raise HTTPException(status_code=500, detail=failure_detail) from e

        return clean_json(text)

    async def generate_project_plan(self, user_prompt: str) -> Any:
        logger.info(f"Generating project plan for: {user_prompt[:100]}")
        prompt = f"""
You are an expert project manager.
Analyze the user's request: "{user_prompt}".
Break it down into 5 to 8 concrete tasks.

You MUST output ONLY raw JSON. Do not write any introduction.

JSON Schema:
{{
  "tasks": [
    {{
      "title": "Actionable title",
      "description": "Brief description",
      "status": "TODO",
      "priority": "LOW | MEDIUM | HIGH | CRITICAL"
    }}
  ]
}}
"""
        return await self._complete_json(prompt, "AI Service Failed")

    async def refine_task(self, task_title: str) -> Any:
        prompt = f"""
Refine this vague task title: "{task_title}".
Output ONLY raw JSON.

JSON Schema:
{{
  "suggestedTitle": "Professional title",
  "description": "Clear description",
  "subtasks": ["Step 1", "Step 2", "Step 3"],
  "priority": "LOW | MEDIUM | HIGH | CRITICAL",
  "tags": ["tag"]
}}
"""
        return await self._complete_json(prompt, "Failed to refine task")

    async def analyze_project_health(self, tasks: List[Dict[str, Any]]) -> Any:
        prompt = f"""
You are a delivery lead reviewing a project board.
Tasks (title [status, priority]):
{_task_lines(tasks)}

Judge the project's health from the spread of statuses and priorities:
blocked or unfinished high-priority work is a risk.
Output ONLY raw JSON.

JSON Schema:
{{
  "score": 0,
  "status": "Healthy | At Risk | Critical",
  "analysis": "Two or three sentences",
  "recommendation": "The single most useful next step"
}}
The score is an integer from 0 (failing) to 100 (on track).
"""
        return await self._complete_json(prompt, "Failed to analyze project")

    async def write_release_notes(self, tasks: List[Dict[str, Any]]) -> Any:
        prompt = f"""
You are writing release notes for stakeholders.
Completed work (title [tag]):
{_task_lines(tasks)}

Group related items, lead with user-visible changes and keep the tone plain.
Output ONLY raw JSON.

JSON Schema:
{{
  "versionTitle": "Short release name",
  "executiveSummary": "One paragraph",
  "markdownContent": "Full notes in Markdown"
}}
"""
        return await self._complete_json(prompt, "Failed to write report")

    async def chat_with_project(self, question: str, tasks: List[Dict[str, Any]]) -> Any:
        prompt = f"""
You are an assistant that answers questions about one project.
Only use the tasks below; say so when they do not contain the answer.
Tasks (title [status, priority]):
{_task_lines(tasks)}

Question: "{question}"

Output ONLY raw JSON.

JSON Schema:
{{
  "answer": "Your answer"
}}
"""
        return await self._complete_json(prompt, "Failed to answer question")


_ai_service: Optional[AIService] = None


def get_ai_service() -> AIService:
    """Dependency: process-wide AIService"""
    global _ai_service
    if _ai_service is None:
        _ai_service = AIService()
    return _ai_service
