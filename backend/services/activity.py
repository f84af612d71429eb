# services/activity.py — Append-only activity log

from typing import Optional, Dict, Any, List

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from models import ActivityLog, ActivityType, Project, User
from permissions import WorkspacePermissionService, ALL_ROLES

DEFAULT_LIMIT = 20


def log_activity(
    db: AsyncSession,
    *,
    workspace_id: str,
    user_id: Optional[str],
    type: ActivityType,
    message: str,
    project_id: Optional[str] = None,
    task_id: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> ActivityLog:
    """Stage one activity row on ``db``; the caller's commit persists it."""
    entry = ActivityLog(
        workspace_id=workspace_id,
        project_id=project_id,
        task_id=task_id,
        user_id=user_id,
        type=type,
        message=message,
        payload=payload,
    )
    db.add(entry)
    return entry


def _feed_query(limit: int):
    return (
        select(ActivityLog)
        .options(
            selectinload(ActivityLog.project),
            selectinload(ActivityLog.task),
            selectinload(ActivityLog.user),
        )
        .order_by(ActivityLog.created_at.desc())
        .limit(limit)
    )


class ActivityService:

    @staticmethod
    async def list_for_workspace(
        db: AsyncSession, user: User, workspace_id: str, limit: int = DEFAULT_LIMIT
    ) -> List[ActivityLog]:
        await WorkspacePermissionService.ensure_workspace_role(db, user, workspace_id, ALL_ROLES)
        result = await db.execute(_feed_query(limit).where(ActivityLog.workspace_id == workspace_id))
        return list(result.scalars().all())

    @staticmethod
    async def list_for_project(
        db: AsyncSession, user: User, project_id: str, limit: int = DEFAULT_LIMIT
    ) -> List[ActivityLog]:
        project = await db.get(Project, project_id)
        if project is None:
            raise HTTPException(status_code=404, detail="Project not found")
        await WorkspacePermissionService.ensure_workspace_role(db, user, project.workspace_id, ALL_ROLES)
        result = await db.execute(_feed_query(limit).where(ActivityLog.project_id == project_id))
        return list(result.scalars().all())
