# routers/workspaces.py — Workspaces, members and invites
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_local_user
from database import get_db_session
from models import User, WorkspaceRole
from permissions import (
    require_workspace_role, WorkspaceAccess,
    ALL_ROLES, MANAGER_ROLES, OWNER_ONLY,
)
from schemas import CamelModel, WorkspaceOut, MemberOut, InviteOut
from services.workspaces import WorkspaceService

router = APIRouter(prefix="/workspaces", tags=["Workspaces"])


# --- Request Schemas ---

class WorkspaceCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)


class WorkspaceUpdate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)


class MemberRoleUpdate(CamelModel):
    role: WorkspaceRole


class InviteCreate(CamelModel):
    email: EmailStr
    role: Optional[WorkspaceRole] = WorkspaceRole.MEMBER


# --- Endpoints ---

@router.get("")
async def list_workspaces(
    user: User = Depends(get_local_user),
    db: AsyncSession = Depends(get_db_session),
):
    memberships = await WorkspaceService.list_for_user(db, user)
    return [
        {
            "workspaceId": m.workspace_id,
            "role": m.role.value,
            "workspace": WorkspaceOut.model_validate(m.workspace),
        }
        for m in memberships
    ]


@router.post("", status_code=201)
async def create_workspace(
    body: WorkspaceCreate,
    user: User = Depends(get_local_user),
    db: AsyncSession = Depends(get_db_session),
):
    workspace = await WorkspaceService.create_workspace(db, user, body.name)
    return {"workspace": WorkspaceOut.model_validate(workspace)}


@router.post("/invites/{token}/accept")
async def accept_invite(
    token: str,
    user: User = Depends(get_local_user),
    db: AsyncSession = Depends(get_db_session),
):
    member, workspace = await WorkspaceService.accept_invite(db, user, token)
    return {
        "success": True,
        "membership": MemberOut.model_validate(member),
        "workspace": WorkspaceOut.model_validate(workspace),
    }


@router.patch("/{workspace_id}", response_model=WorkspaceOut)
async def update_workspace(
    body: WorkspaceUpdate,
    workspace_id: str,
    access: WorkspaceAccess = Depends(require_workspace_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    return await WorkspaceService.update_workspace(db, access.user, workspace_id, body.name)


@router.delete("/{workspace_id}")
async def delete_workspace(
    workspace_id: str,
    access: WorkspaceAccess = Depends(require_workspace_role(*OWNER_ONLY)),
    db: AsyncSession = Depends(get_db_session),
):
    await WorkspaceService.delete_workspace(db, access.user, workspace_id)
    return {"success": True}


@router.get("/{workspace_id}/members")
async def list_members(
    workspace_id: str,
    access: WorkspaceAccess = Depends(require_workspace_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    members = await WorkspaceService.list_members(db, access.user, workspace_id)
    return [MemberOut.model_validate(m) for m in members]


@router.patch("/{workspace_id}/members/{member_id}", response_model=MemberOut)
async def update_member_role(
    body: MemberRoleUpdate,
    workspace_id: str,
    member_id: str,
    access: WorkspaceAccess = Depends(require_workspace_role(*OWNER_ONLY)),
    db: AsyncSession = Depends(get_db_session),
):
    return await WorkspaceService.update_member_role(db, access.user, workspace_id, member_id, body.role)


@router.delete("/{workspace_id}/members/{member_id}")
async def remove_member(
    workspace_id: str,
    member_id: str,
    access: WorkspaceAccess = Depends(require_workspace_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    await WorkspaceService.remove_member(db, access.user, workspace_id, member_id)
    return {"success": True}


@router.post("/{workspace_id}/invites", response_model=InviteOut, status_code=201)
async def create_invite(
    body: InviteCreate,
    workspace_id: str,
    access: WorkspaceAccess = Depends(require_workspace_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    return await WorkspaceService.create_invite(
        db, access.user, workspace_id, body.email, body.role or WorkspaceRole.MEMBER
    )


@router.get("/{workspace_id}/invites")
async def list_invites(
    workspace_id: str,
    access: WorkspaceAccess = Depends(require_workspace_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    invites = await WorkspaceService.list_invites(db, access.user, workspace_id)
    return [InviteOut.model_validate(i) for i in invites]
