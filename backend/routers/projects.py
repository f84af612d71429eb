# routers/projects.py — Projects inside a workspace
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from permissions import (
    require_workspace_role, WorkspaceAccess,
    ALL_ROLES, EDITOR_ROLES, MANAGER_ROLES,
)
from schemas import CamelModel, ProjectOut
from services.projects import ProjectService

router = APIRouter(prefix="/projects", tags=["Projects"])


# --- Request Schemas ---

class ProjectCreate(CamelModel):
    workspace_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(None, max_length=1000)


class ProjectUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    description: Optional[str] = Field(None, max_length=1000)
    archived: Optional[bool] = None


# --- Endpoints ---

@router.get("")
async def list_projects(
    workspace_id: str = Query(..., alias="workspaceId"),
    include_archived: bool = Query(True, alias="includeArchived"),
    access: WorkspaceAccess = Depends(require_workspace_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    projects = await ProjectService.list_projects(db, access.user, workspace_id, include_archived)
    return {"projects": [ProjectOut.model_validate(p) for p in projects]}


@router.post("", status_code=201)
async def create_project(
    body: ProjectCreate,
    access: WorkspaceAccess = Depends(require_workspace_role(*EDITOR_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    project = await ProjectService.create_project(
        db, access.user, body.workspace_id, body.name, body.description
    )
    return {"project": ProjectOut.model_validate(project)}


@router.get("/{project_id}")
async def get_project(
    project_id: str,
    access: WorkspaceAccess = Depends(require_workspace_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    project = await ProjectService.get_project(db, access.user, project_id)
    return {"project": ProjectOut.model_validate(project)}


@router.patch("/{project_id}")
async def update_project(
    project_id: str,
    body: ProjectUpdate,
    access: WorkspaceAccess = Depends(require_workspace_role(*EDITOR_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    updates = body.model_dump(exclude_unset=True)
    project = await ProjectService.update_project(db, access.user, project_id, updates)
    return {"project": ProjectOut.model_validate(project)}


@router.patch("/{project_id}/archive")
async def archive_project(
    project_id: str,
    access: WorkspaceAccess = Depends(require_workspace_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    project = await ProjectService.archive_project(db, access.user, project_id)
    return {"project": ProjectOut.model_validate(project)}


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    access: WorkspaceAccess = Depends(require_workspace_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    await ProjectService.delete_project(db, access.user, project_id)
    return {"success": True}
