# routers/ai.py — Generative conveniences: plans, refinement, health, release notes, chat
from typing import List

from fastapi import APIRouter, Depends
from pydantic import Field

from auth import get_current_user, AuthUser
from ai_engine import AIService, get_ai_service
from schemas import CamelModel

router = APIRouter(prefix="/ai", tags=["AI"])


# --- Request Schemas ---

class GeneratePlanRequest(CamelModel):
    prompt: str = Field(..., min_length=5, max_length=500)


class RefineTaskRequest(CamelModel):
    task_title: str = Field(..., min_length=1, max_length=100)


class TaskSummary(CamelModel):
    title: str = Field(..., min_length=1)
    status: str = ""
    priority: str = ""


class CompletedTask(CamelModel):
    title: str = Field(..., min_length=1)
    tag: str = ""


class AnalyzeProjectRequest(CamelModel):
    tasks: List[TaskSummary]


class WriteReportRequest(CamelModel):
    tasks: List[CompletedTask]


class ChatRequest(CamelModel):
    question: str = Field(..., min_length=1)
    tasks: List[TaskSummary] = []


# --- Endpoints ---

@router.post("/generate-plan")
async def generate_plan(
    body: GeneratePlanRequest,
    user: AuthUser = Depends(get_current_user),
    ai: AIService = Depends(get_ai_service),
):
    return await ai.generate_project_plan(body.prompt)


@router.post("/refine-task")
async def refine_task(
    body: RefineTaskRequest,
    user: AuthUser = Depends(get_current_user),
    ai: AIService = Depends(get_ai_service),
):
    return await ai.refine_task(body.task_title)


@router.post("/analyze-project")
async def analyze_project(
    body: AnalyzeProjectRequest,
    user: AuthUser = Depends(get_current_user),
    ai: AIService = Depends(get_ai_service),
):
    return await ai.analyze_project_health([t.model_dump() for t in body.tasks])


@router.post("/write-report")
async def write_report(
    body: WriteReportRequest,
    user: AuthUser = Depends(get_current_user),
    ai: AIService = Depends(get_ai_service),
):
    return await ai.write_release_notes([t.model_dump() for t in body.tasks])


@router.post("/chat")
async def chat(
    body: ChatRequest,
    user: AuthUser = Depends(get_current_user),
    ai: AIService = Depends(get_ai_service),
):
    return await ai.chat_with_project(body.question, [t.model_dump() for t in body.tasks])
