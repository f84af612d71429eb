# routers/tasks.py — Tasks, child tasks and subtasks
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, Query
from pydantic import Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from models import TaskStatus, TaskPriority, TaskType
from permissions import require_workspace_role, WorkspaceAccess, ALL_ROLES, EDITOR_ROLES
from schemas import CamelModel, TaskOut, SubtaskOut
from services.tasks import TaskService, MAX_ASSIGNEES

router = APIRouter(prefix="/tasks", tags=["Tasks"])


# --- Request Schemas ---

class _AssigneeListMixin(CamelModel):
    assignee_ids: Optional[List[str]] = Field(None, max_length=MAX_ASSIGNEES)

    @field_validator("assignee_ids")
    @classmethod
    def _unique_assignees(cls, v):
        if v is not None and len(set(v)) != len(v):
            raise ValueError("assigneeIds must be unique")
        return v


class TaskCreate(_AssigneeListMixin):
    project_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    type: Optional[TaskType] = None
    order_index: Optional[int] = Field(None, ge=0)
    estimate_minutes: Optional[int] = Field(None, ge=0)
    due_date: Optional[datetime] = None
    parent_task_id: Optional[str] = None


class TaskUpdate(_AssigneeListMixin):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    type: Optional[TaskType] = None
    order_index: Optional[int] = Field(None, ge=0)
    estimate_minutes: Optional[int] = Field(None, ge=0)
    due_date: Optional[datetime] = None
    parent_task_id: Optional[str] = None


class SubtaskCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=500)


class SubtaskUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    is_completed: Optional[bool] = None


# --- Endpoints ---

@router.get("")
async def list_tasks(
    project_id: str = Query(..., alias="projectId"),
    access: WorkspaceAccess = Depends(require_workspace_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    tasks = await TaskService.list_tasks(db, access.user, project_id)
    return {"tasks": [TaskOut.model_validate(t) for t in tasks]}


@router.get("/project/{project_id}")
async def list_project_tasks(
    project_id: str,
    access: WorkspaceAccess = Depends(require_workspace_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    tasks = await TaskService.list_tasks(db, access.user, project_id)
    return {"tasks": [TaskOut.model_validate(t) for t in tasks]}


@router.post("", status_code=201)
async def create_task(
    body: TaskCreate,
    access: WorkspaceAccess = Depends(require_workspace_role(*EDITOR_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    task = await TaskService.create_task(db, access.user, body.model_dump())
    return {"task": TaskOut.model_validate(task)}


@router.patch("/subtasks/{subtask_id}")
async def update_subtask(
    subtask_id: str,
    body: SubtaskUpdate,
    access: WorkspaceAccess = Depends(require_workspace_role(*EDITOR_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    subtask = await TaskService.update_subtask(db, access.user, subtask_id, body.model_dump(exclude_unset=True))
    return {"subtask": SubtaskOut.model_validate(subtask)}


@router.delete("/subtasks/{subtask_id}")
async def delete_subtask(
    subtask_id: str,
    access: WorkspaceAccess = Depends(require_workspace_role(*EDITOR_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    await TaskService.delete_subtask(db, access.user, subtask_id)
    return {"success": True}


@router.get("/{task_id}")
async def get_task(
    task_id: str,
    access: WorkspaceAccess = Depends(require_workspace_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    task = await TaskService.get_task(db, access.user, task_id)
    return {"task": TaskOut.model_validate(task)}


@router.patch("/{task_id}")
async def update_task(
    task_id: str,
    body: TaskUpdate,
    access: WorkspaceAccess = Depends(require_workspace_role(*EDITOR_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    task = await TaskService.update_task(db, access.user, task_id, body.model_dump(exclude_unset=True))
    return {"task": TaskOut.model_validate(task)}


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    access: WorkspaceAccess = Depends(require_workspace_role(*EDITOR_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    await TaskService.delete_task(db, access.user, task_id)
    return {"success": True}


@router.post("/{task_id}/subtasks", status_code=201)
async def create_subtask(
    task_id: str,
    body: SubtaskCreate,
    access: WorkspaceAccess = Depends(require_workspace_role(*EDITOR_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    subtask = await TaskService.create_subtask(db, access.user, task_id, body.title)
    return {"subtask": SubtaskOut.model_validate(subtask)}
