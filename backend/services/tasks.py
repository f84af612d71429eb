# services/tasks.py — Tasks, child tasks, assignees and subtasks
# - One level of nesting: a child task never has children of its own
# - At most MAX_ASSIGNEES assignees per task, all members of the workspace
# - Updates record a before/after payload of the fields that changed

from datetime import datetime
from enum import Enum
from typing import List, Dict, Any, Optional, Tuple

from fastapi import HTTPException
from pydantic.alias_generators import to_camel
from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from models import (
    User, Project, Task, TaskAssignee, Subtask, WorkspaceMember,
    TaskStatus, TaskPriority, TaskType, ActivityType, as_utc,
)
from permissions import WorkspacePermissionService, ALL_ROLES, EDITOR_ROLES
from services.activity import log_activity

MAX_ASSIGNEES = 5

TASK_FIELDS = (
    "title", "description", "status", "priority", "type",
    "order_index", "estimate_minutes", "due_date", "parent_task_id",
)
NON_NULLABLE_FIELDS = ("title", "status", "priority", "type", "order_index")


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _task_query():
    return select(Task).options(
        selectinload(Task.subtasks),
        selectinload(Task.assignees).selectinload(TaskAssignee.user),
    )


class TaskService:

    # --- Helpers ---

    @staticmethod
    async def _get_task_or_404(db: AsyncSession, task_id: str) -> Task:
        task = await db.get(Task, task_id)
        if task is None:
            raise HTTPException(status_code=404, detail="Task not found")
        return task

    @staticmethod
    async def _get_project_or_404(db: AsyncSession, project_id: str) -> Project:
        project = await db.get(Project, project_id)
        if project is None:
            raise HTTPException(status_code=404, detail="Project not found")
        return project

    @staticmethod
    async def _authorize_task(
        db: AsyncSession, user: User, task_id: str, roles
    ) -> Tuple[Task, Project]:
        task = await TaskService._get_task_or_404(db, task_id)
        project = await TaskService._get_project_or_404(db, task.project_id)
        await WorkspacePermissionService.ensure_workspace_role(db, user, project.workspace_id, roles)
        return task, project

    @staticmethod
    async def load_task(db: AsyncSession, task_id: str) -> Task:
        """Task with subtasks and assignees loaded, refreshed from the database"""
        result = await db.execute(
            _task_query().where(Task.id == task_id).execution_options(populate_existing=True)
        )
        task = result.scalar_one_or_none()
        if task is None:
            raise HTTPException(status_code=404, detail="Task not found")
        return task

    @staticmethod
    async def _validate_parent(
        db: AsyncSession, project_id: str, parent_task_id: str, task_id: Optional[str] = None
    ) -> Task:
        if task_id is not None and parent_task_id == task_id:
            raise HTTPException(status_code=400, detail="A task cannot be its own parent")

        parent = await db.get(Task, parent_task_id)
        if parent is None or parent.project_id != project_id:
            raise HTTPException(status_code=400, detail="Parent task must exist in the same project")
        if parent.parent_task_id is not None:
            raise HTTPException(status_code=400, detail="Parent task is already a child task")

        if task_id is not None:
            children = await db.scalar(
                select(func.count(Task.id)).where(Task.parent_task_id == task_id)
            )
            if children:
                raise HTTPException(status_code=400, detail="A task with child tasks cannot be given a parent")
        return parent

    @staticmethod
    async def _validate_assignees(
        db: AsyncSession, workspace_id: str, assignee_ids: List[str]
    ) -> List[str]:
        unique_ids = list(dict.fromkeys(assignee_ids))
        if len(unique_ids) > MAX_ASSIGNEES:
            raise HTTPException(status_code=400, detail=f"A task can have at most {MAX_ASSIGNEES} assignees")
        if not unique_ids:
            return unique_ids

        result = await db.execute(
            select(WorkspaceMember.user_id).where(
                WorkspaceMember.workspace_id == workspace_id,
                WorkspaceMember.user_id.in_(unique_ids),
            )
        )
        member_ids = set(result.scalars().all())
        if member_ids != set(unique_ids):
            raise HTTPException(status_code=403, detail="All assignees must be members of the workspace")
        return unique_ids

    @staticmethod
    async def _current_assignee_ids(db: AsyncSession, task_id: str) -> List[str]:
        result = await db.execute(
            select(TaskAssignee.user_id)
            .where(TaskAssignee.task_id == task_id)
            .order_by(TaskAssignee.created_at.asc())
        )
        return list(result.scalars().all())

    # --- Tasks ---

    @staticmethod
    async def list_tasks(db: AsyncSession, user: User, project_id: str) -> List[Task]:
        project = await TaskService._get_project_or_404(db, project_id)
        await WorkspacePermissionService.ensure_workspace_role(db, user, project.workspace_id, ALL_ROLES)
        result = await db.execute(
            _task_query()
            .where(Task.project_id == project_id)
            .order_by(Task.order_index.asc(), Task.created_at.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_task(db: AsyncSession, user: User, task_id: str) -> Task:
        await TaskService._authorize_task(db, user, task_id, ALL_ROLES)
        return await TaskService.load_task(db, task_id)

    @staticmethod
    async def create_task(db: AsyncSession, user: User, data: Dict[str, Any]) -> Task:
        project = await TaskService._get_project_or_404(db, data["project_id"])
        await WorkspacePermissionService.ensure_workspace_role(db, user, project.workspace_id, EDITOR_ROLES)

        title = (data.get("title") or "").strip()
        if not title:
            raise HTTPException(status_code=400, detail="Task title is required")

        parent_task_id = data.get("parent_task_id")
        if parent_task_id:
            await TaskService._validate_parent(db, project.id, parent_task_id)

        assignee_ids = await TaskService._validate_assignees(
            db, project.workspace_id, data.get("assignee_ids") or []
        )

        order_index = data.get("order_index")
        if order_index is None:
            current_max = await db.scalar(
                select(func.max(Task.order_index)).where(Task.project_id == project.id)
            )
            order_index = 0 if current_max is None else current_max + 1

        task = Task(
            project_id=project.id,
            parent_task_id=parent_task_id or None,
            created_by_id=user.id,
            title=title,
            description=data.get("description"),
            status=data.get("status") or TaskStatus.TODO,
            priority=data.get("priority") or TaskPriority.MEDIUM,
            type=data.get("type") or TaskType.TASK,
            order_index=order_index,
            estimate_minutes=data.get("estimate_minutes"),
            due_date=data.get("due_date"),
        )
        db.add(task)
        await db.flush()

        for assignee_id in assignee_ids:
            db.add(TaskAssignee(task_id=task.id, user_id=assignee_id))

        log_activity(
            db,
            workspace_id=project.workspace_id,
            project_id=project.id,
            task_id=task.id,
            user_id=user.id,
            type=ActivityType.TASK_CREATED,
            message=f'Created task "{title}"',
            payload={"status": task.status.value, "priority": task.priority.value},
        )
        await db.commit()
        return await TaskService.load_task(db, task.id)

    @staticmethod
    async def update_task(db: AsyncSession, user: User, task_id: str, updates: Dict[str, Any]) -> Task:
        """Apply a partial update. Keys absent from ``updates`` are left alone;
        ``parent_task_id=None`` detaches the task from its parent."""
        task, project = await TaskService._authorize_task(db, user, task_id, EDITOR_ROLES)

        before: Dict[str, Any] = {}
        after: Dict[str, Any] = {}

        for field in TASK_FIELDS:
            if field not in updates:
                continue
            value = updates[field]
            if value is None and field in NON_NULLABLE_FIELDS:
                continue
            if field == "title":
                value = value.strip()
                if not value:
                    raise HTTPException(status_code=400, detail="Task title cannot be empty")
            if field == "parent_task_id" and value and value != task.parent_task_id:
                await TaskService._validate_parent(db, project.id, value, task.id)

            current = getattr(task, field)
            if isinstance(value, datetime):
                current, value = as_utc(current), as_utc(value)
            if current != value:
                before[to_camel(field)] = _jsonable(current)
                after[to_camel(field)] = _jsonable(value)
                setattr(task, field, value)

        if updates.get("assignee_ids") is not None:
            new_ids = await TaskService._validate_assignees(db, project.workspace_id, updates["assignee_ids"])
            current_ids = await TaskService._current_assignee_ids(db, task.id)
            if set(new_ids) != set(current_ids):
                await db.execute(
                    delete(TaskAssignee)
                    .where(TaskAssignee.task_id == task.id)
                    .execution_options(synchronize_session=False)
                )
                for assignee_id in new_ids:
                    db.add(TaskAssignee(task_id=task.id, user_id=assignee_id))
                before["assigneeIds"] = current_ids
                after["assigneeIds"] = new_ids

        if after:
            if "status" in after:
                activity_type = ActivityType.TASK_STATUS_CHANGED
                message = f'Moved task "{task.title}" from {before["status"]} to {after["status"]}'
            else:
                activity_type = ActivityType.TASK_UPDATED
                message = f'Updated task "{task.title}"'
            log_activity(
                db,
                workspace_id=project.workspace_id,
                project_id=project.id,
                task_id=task.id,
                user_id=user.id,
                type=activity_type,
                message=message,
                payload={"before": before, "after": after},
            )
            await db.commit()

        return await TaskService.load_task(db, task.id)

    @staticmethod
    async def delete_task(db: AsyncSession, user: User, task_id: str) -> None:
        task, project = await TaskService._authorize_task(db, user, task_id, EDITOR_ROLES)
        title = task.title

        await db.execute(
            delete(Task)
            .where(Task.id == task_id)
            .execution_options(synchronize_session=False)
        )
        log_activity(
            db,
            workspace_id=project.workspace_id,
            project_id=project.id,
            user_id=user.id,
            type=ActivityType.TASK_DELETED,
            message=f'Deleted task "{title}"',
            payload={"taskId": task_id, "title": title},
        )
        await db.commit()

    # --- Subtasks ---

    @staticmethod
    async def create_subtask(db: AsyncSession, user: User, task_id: str, title: str) -> Subtask:
        task, project = await TaskService._authorize_task(db, user, task_id, EDITOR_ROLES)

        title = (title or "").strip()
        if not title:
            raise HTTPException(status_code=400, detail="Subtask title is required")

        subtask = Subtask(task_id=task.id, title=title)
        db.add(subtask)
        await db.flush()

        log_activity(
            db,
            workspace_id=project.workspace_id,
            project_id=project.id,
            task_id=task.id,
            user_id=user.id,
            type=ActivityType.SUBTASK_CREATED,
            message=f'Added subtask "{title}" to "{task.title}"',
            payload={"subtaskId": subtask.id},
        )
        await db.commit()
        return subtask

    @staticmethod
    async def _authorize_subtask(db: AsyncSession, user: User, subtask_id: str) -> Tuple[Subtask, Task, Project]:
        subtask = await db.get(Subtask, subtask_id)
        if subtask is None:
            raise HTTPException(status_code=404, detail="Subtask not found")
        task, project = await TaskService._authorize_task(db, user, subtask.task_id, EDITOR_ROLES)
        return subtask, task, project

    @staticmethod
    async def update_subtask(
        db: AsyncSession, user: User, subtask_id: str, updates: Dict[str, Any]
    ) -> Subtask:
        subtask, task, project = await TaskService._authorize_subtask(db, user, subtask_id)

        before: Dict[str, Any] = {}
        after: Dict[str, Any] = {}
        for field in ("title", "is_completed"):
            value = updates.get(field)
            if value is None:
                continue
            if field == "title":
                value = value.strip()
                if not value:
                    raise HTTPException(status_code=400, detail="Subtask title cannot be empty")
            if getattr(subtask, field) != value:
                before[to_camel(field)] = getattr(subtask, field)
                after[to_camel(field)] = value
                setattr(subtask, field, value)

        if after:
            if after.get("isCompleted") is True:
                message = f'Completed subtask "{subtask.title}"'
            elif after.get("isCompleted") is False:
                message = f'Reopened subtask "{subtask.title}"'
            else:
                message = f'Updated subtask "{subtask.title}"'
            log_activity(
                db,
                workspace_id=project.workspace_id,
                project_id=project.id,
                task_id=task.id,
                user_id=user.id,
                type=ActivityType.SUBTASK_UPDATED,
                message=message,
                payload={"subtaskId": subtask.id, "before": before, "after": after},
            )
            await db.commit()
        return subtask

    @staticmethod
    async def delete_subtask(db: AsyncSession, user: User, subtask_id: str) -> None:
        subtask, task, project = await TaskService._authorize_subtask(db, user, subtask_id)

        log_activity(
            db,
            workspace_id=project.workspace_id,
            project_id=project.id,
            task_id=task.id,
            user_id=user.id,
            type=ActivityType.SUBTASK_DELETED,
            message=f'Removed subtask "{subtask.title}" from "{task.title}"',
            payload={"subtaskId": subtask.id, "title": subtask.title},
        )
        await db.delete(subtask)
        await db.commit()
