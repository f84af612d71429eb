# routers/activity.py — Activity feeds
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from permissions import require_workspace_role, WorkspaceAccess, ALL_ROLES
from schemas import ActivityOut
from services.activity import ActivityService, DEFAULT_LIMIT

router = APIRouter(prefix="/activity", tags=["Activity"])


@router.get("/workspace/{workspace_id}")
async def workspace_activity(
    workspace_id: str,
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=100),
    access: WorkspaceAccess = Depends(require_workspace_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    rows = await ActivityService.list_for_workspace(db, access.user, workspace_id, limit)
    return {"activity": [ActivityOut.model_validate(r) for r in rows]}


@router.get("/project/{project_id}")
async def project_activity(
    project_id: str,
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=100),
    access: WorkspaceAccess = Depends(require_workspace_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    rows = await ActivityService.list_for_project(db, access.user, project_id, limit)
    return {"activity": [ActivityOut.model_validate(r) for r in rows]}
