# services/projects.py — Projects inside a workspace

from typing import List, Dict, Any, Optional

from fastapi import HTTPException
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from models import User, Project, ActivityType
from permissions import WorkspacePermissionService, ALL_ROLES, EDITOR_ROLES, MANAGER_ROLES
from services.activity import log_activity

UPDATABLE_FIELDS = ("name", "description", "archived")


class ProjectService:

    @staticmethod
    async def get_project_or_404(db: AsyncSession, project_id: str) -> Project:
        project = await db.get(Project, project_id)
        if project is None:
            raise HTTPException(status_code=404, detail="Project not found")
        return project

    @staticmethod
    async def list_projects(
        db: AsyncSession, user: User, workspace_id: str, include_archived: bool = True
    ) -> List[Project]:
        await WorkspacePermissionService.ensure_workspace_role(db, user, workspace_id, ALL_ROLES)
        stmt = select(Project).where(Project.workspace_id == workspace_id)
        if not include_archived:
            stmt = stmt.where(Project.archived.is_(False))
        result = await db.execute(stmt.order_by(Project.created_at.asc()))
        return list(result.scalars().all())

    @staticmethod
    async def create_project(
        db: AsyncSession, user: User, workspace_id: str, name: str, description: Optional[str] = None
    ) -> Project:
        await WorkspacePermissionService.ensure_workspace_role(db, user, workspace_id, EDITOR_ROLES)

        project = Project(workspace_id=workspace_id, name=name.strip(), description=description)
        db.add(project)
        await db.flush()

        log_activity(
            db,
            workspace_id=workspace_id,
            project_id=project.id,
            user_id=user.id,
            type=ActivityType.PROJECT_CREATED,
            message=f'Created project "{project.name}"',
        )
        await db.commit()
        return project

    @staticmethod
    async def get_project(db: AsyncSession, user: User, project_id: str) -> Project:
        project = await ProjectService.get_project_or_404(db, project_id)
        await WorkspacePermissionService.ensure_workspace_role(db, user, project.workspace_id, ALL_ROLES)
        return project

    @staticmethod
    async def update_project(
        db: AsyncSession, user: User, project_id: str, updates: Dict[str, Any]
    ) -> Project:
        project = await ProjectService.get_project_or_404(db, project_id)
        await WorkspacePermissionService.ensure_workspace_role(db, user, project.workspace_id, EDITOR_ROLES)

        before, after = {}, {}
        for field in UPDATABLE_FIELDS:
            if field not in updates:
                continue
            value = updates[field]
            if field == "name":
                if value is None or not value.strip():
                    raise HTTPException(status_code=400, detail="Project name cannot be empty")
                value = value.strip()
            if field == "archived" and value is None:
                continue
            if getattr(project, field) != value:
                before[field] = getattr(project, field)
                after[field] = value
                setattr(project, field, value)

        if after:
            log_activity(
                db,
                workspace_id=project.workspace_id,
                project_id=project.id,
                user_id=user.id,
                type=ActivityType.PROJECT_UPDATED,
                message=f'Updated project "{project.name}"',
                payload={"before": before, "after": after},
            )
            await db.commit()
        return project

    @staticmethod
    async def archive_project(db: AsyncSession, user: User, project_id: str) -> Project:
        project = await ProjectService.get_project_or_404(db, project_id)
        await WorkspacePermissionService.ensure_workspace_role(db, user, project.workspace_id, MANAGER_ROLES)

        if not project.archived:
            project.archived = True
            log_activity(
                db,
                workspace_id=project.workspace_id,
                project_id=project.id,
                user_id=user.id,
                type=ActivityType.PROJECT_ARCHIVED,
                message=f'Archived project "{project.name}"',
            )
            await db.commit()
        return project

    @staticmethod
    async def delete_project(db: AsyncSession, user: User, project_id: str) -> None:
        """Delete a project with its tasks, subtasks, assignees and activity.

        The workspace keeps one PROJECT_DELETED row that no longer points at
        the project.
        """
        project = await ProjectService.get_project_or_404(db, project_id)
        await WorkspacePermissionService.ensure_workspace_role(db, user, project.workspace_id, MANAGER_ROLES)
        workspace_id, name = project.workspace_id, project.name

        await db.execute(
            delete(Project)
            .where(Project.id == project_id)
            .execution_options(synchronize_session=False)
        )
        log_activity(
            db,
            workspace_id=workspace_id,
            user_id=user.id,
            type=ActivityType.PROJECT_DELETED,
            message=f'Deleted project "{name}"',
            payload={"name": name},
        )
        await db.commit()
