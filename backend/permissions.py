# permissions.py — Workspace-scoped authorization for TaskRythm
# Every protected route names the roles it accepts; the workspace is worked out
# from whatever identifier the request carries (workspace, invite token,
# project, task or subtask) and the caller's role in it is checked once.

from dataclasses import dataclass
from typing import Optional, Dict, Any, Iterable, Sequence

from fastapi import HTTPException, Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_local_user
from database import get_db_session
from models import (
    User, Workspace, WorkspaceMember, WorkspaceInvite, WorkspaceRole,
    Project, Task, Subtask,
)

ALL_ROLES = (WorkspaceRole.OWNER, WorkspaceRole.ADMIN, WorkspaceRole.MEMBER, WorkspaceRole.VIEWER)
EDITOR_ROLES = (WorkspaceRole.OWNER, WorkspaceRole.ADMIN, WorkspaceRole.MEMBER)
MANAGER_ROLES = (WorkspaceRole.OWNER, WorkspaceRole.ADMIN)
OWNER_ONLY = (WorkspaceRole.OWNER,)


class WorkspaceResolutionError(Exception):
    """The request carries nothing a workspace can be derived from."""


@dataclass
class WorkspaceAccess:
    user: User
    workspace_id: str
    role: WorkspaceRole


def _pick(sources: Sequence[Dict[str, Any]], *names: str) -> Optional[str]:
    for source in sources:
        for name in names:
            value = source.get(name)
            if value not in (None, ""):
                return str(value)
    return None


async def _read_json_body(request: Request) -> Dict[str, Any]:
    if "application/json" not in request.headers.get("content-type", ""):
        return {}
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class WorkspacePermissionService:
    """Workspace resolution and role checks"""

    @staticmethod
    async def resolve_workspace_id(
        db: AsyncSession,
        params: Dict[str, Any],
        query: Dict[str, Any],
        body: Dict[str, Any],
    ) -> str:
        sources = (params, query, body)

        workspace_id = _pick(sources, "workspaceId", "workspace_id")
        if workspace_id:
            return workspace_id

        token = _pick(sources, "token")
        if token:
            result = await db.execute(
                select(WorkspaceInvite.workspace_id).where(WorkspaceInvite.token == token)
            )
            invite_workspace_id = result.scalar_one_or_none()
            if invite_workspace_id:
                return invite_workspace_id

        generic_id = _pick((params,), "id")

        project_id = _pick(sources, "projectId", "project_id")
        if project_id:
            project_workspace_id = await WorkspacePermissionService._project_workspace(db, project_id)
            if project_workspace_id is None:
                raise HTTPException(status_code=403, detail="Project not found")
            return project_workspace_id
        if generic_id:
            project_workspace_id = await WorkspacePermissionService._project_workspace(db, generic_id)
            if project_workspace_id:
                return project_workspace_id

        task_id = _pick(sources, "taskId", "task_id")
        if task_id:
            task_workspace_id = await WorkspacePermissionService._task_workspace(db, task_id)
            if task_workspace_id is None:
                raise HTTPException(status_code=403, detail="Task not found")
            return task_workspace_id
        if generic_id:
            task_workspace_id = await WorkspacePermissionService._task_workspace(db, generic_id)
            if task_workspace_id:
                return task_workspace_id

        subtask_id = _pick(sources, "subtaskId", "subtask_id")
        if subtask_id:
            result = await db.execute(
                select(Project.workspace_id)
                .join(Task, Task.project_id == Project.id)
                .join(Subtask, Subtask.task_id == Task.id)
                .where(Subtask.id == subtask_id)
            )
            subtask_workspace_id = result.scalar_one_or_none()
            if subtask_workspace_id is None:
                raise HTTPException(status_code=403, detail="Subtask not found")
            return subtask_workspace_id

        raise WorkspaceResolutionError(
            "Could not resolve workspace from request. "
            "Expected workspaceId, token, projectId, taskId or subtaskId."
        )

    @staticmethod
    async def _project_workspace(db: AsyncSession, project_id: str) -> Optional[str]:
        result = await db.execute(select(Project.workspace_id).where(Project.id == project_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def _task_workspace(db: AsyncSession, task_id: str) -> Optional[str]:
        result = await db.execute(
            select(Project.workspace_id)
            .join(Task, Task.project_id == Project.id)
            .where(Task.id == task_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_role_for_user_in_workspace(
        db: AsyncSession, user: User, workspace_id: str
    ) -> Optional[WorkspaceRole]:
        workspace = await db.get(Workspace, workspace_id)
        if workspace is None:
            raise HTTPException(status_code=403, detail="Workspace not found")

        if workspace.owner_id == user.id:
            return WorkspaceRole.OWNER

        result = await db.execute(
            select(WorkspaceMember.role).where(
                WorkspaceMember.workspace_id == workspace_id,
                WorkspaceMember.user_id == user.id,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def ensure_workspace_role(
        db: AsyncSession,
        user: User,
        workspace_id: str,
        allowed_roles: Iterable[WorkspaceRole],
    ) -> WorkspaceRole:
        role = await WorkspacePermissionService.get_role_for_user_in_workspace(db, user, workspace_id)
        if role is None:
            raise HTTPException(status_code=403, detail="You are not a member of this workspace")
        if role not in tuple(allowed_roles):
            raise HTTPException(status_code=403, detail="Insufficient permissions for this workspace")
        return role


async def assert_retains_owner(
    db: AsyncSession,
    workspace: Workspace,
    member: WorkspaceMember,
    new_role: Optional[WorkspaceRole] = None,
) -> None:
    """Reject a role change or removal that would leave ``workspace`` without an OWNER.

    ``new_role=None`` means ``member`` is being removed. When ``member`` is the
    workspace's recorded owner, ownership passes to another OWNER member.
    """
    is_owner = member.role == WorkspaceRole.OWNER or workspace.owner_id == member.user_id
    if not is_owner or new_role == WorkspaceRole.OWNER:
        return

    result = await db.execute(
        select(WorkspaceMember)
        .where(
            WorkspaceMember.workspace_id == workspace.id,
            WorkspaceMember.role == WorkspaceRole.OWNER,
            WorkspaceMember.id != member.id,
        )
        .order_by(WorkspaceMember.created_at.asc())
    )
    successor = result.scalars().first()
    if successor is None:
        action = "remove" if new_role is None else "demote"
        raise HTTPException(status_code=403, detail=f"Cannot {action} the last owner of the workspace")

    if workspace.owner_id == member.user_id:
        workspace.owner_id = successor.user_id


def require_workspace_role(*roles: WorkspaceRole):
    """Dependency factory: resolve the request's workspace and require one of ``roles``."""
    allowed = roles or ALL_ROLES

    async def _check(
        request: Request,
        user: User = Depends(get_local_user),
        db: AsyncSession = Depends(get_db_session),
    ) -> WorkspaceAccess:
        body = await _read_json_body(request)
        workspace_id = await WorkspacePermissionService.resolve_workspace_id(
            db, dict(request.path_params), dict(request.query_params), body
        )
        role = await WorkspacePermissionService.ensure_workspace_role(db, user, workspace_id, allowed)
        return WorkspaceAccess(user=user, workspace_id=workspace_id, role=role)

    return _check
