# services/workspaces.py — Workspaces, memberships and invites

import re
import time
import secrets
import logging
from datetime import timedelta
from typing import List, Optional, Tuple

from fastapi import HTTPException
from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from models import (
    User, Workspace, WorkspaceMember, WorkspaceInvite, WorkspaceRole,
    ActivityType, utcnow, as_utc,
)
from permissions import (
    WorkspacePermissionService, assert_retains_owner,
    ALL_ROLES, MANAGER_ROLES, OWNER_ONLY,
)
from services.activity import log_activity

logger = logging.getLogger("taskrythm.workspaces")

INVITE_TTL = timedelta(days=7)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(n: int) -> str:
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = _BASE36[r] + out
    return out or "0"


def slugify(name: str) -> str:
    """URL-safe slug: lower-cased name, a base-36 timestamp and a short random tail."""
    base = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "workspace"
    return f"{base}-{_base36(int(time.time() * 1000))}{secrets.token_hex(2)}"


class WorkspaceService:

    # --- Helpers ---

    @staticmethod
    async def get_workspace_or_404(db: AsyncSession, workspace_id: str) -> Workspace:
        workspace = await db.get(Workspace, workspace_id)
        if workspace is None:
            raise HTTPException(status_code=404, detail="Workspace not found")
        return workspace

    @staticmethod
    async def _get_member_or_404(db: AsyncSession, workspace_id: str, member_id: str) -> WorkspaceMember:
        result = await db.execute(
            select(WorkspaceMember)
            .options(selectinload(WorkspaceMember.user))
            .where(WorkspaceMember.id == member_id, WorkspaceMember.workspace_id == workspace_id)
        )
        member = result.scalar_one_or_none()
        if member is None:
            raise HTTPException(status_code=404, detail="Member not found")
        return member

    # --- Workspaces ---

    @staticmethod
    async def list_for_user(db: AsyncSession, user: User) -> List[WorkspaceMember]:
        result = await db.execute(
            select(WorkspaceMember)
            .options(selectinload(WorkspaceMember.workspace))
            .where(WorkspaceMember.user_id == user.id)
            .order_by(WorkspaceMember.created_at.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def create_workspace(db: AsyncSession, user: User, name: str) -> Workspace:
        name = (name or "").strip()
        if not name:
            raise HTTPException(status_code=400, detail="Workspace name is required")

        workspace = Workspace(name=name, slug=slugify(name), owner_id=user.id)
        db.add(workspace)
        await db.flush()

        db.add(WorkspaceMember(workspace_id=workspace.id, user_id=user.id, role=WorkspaceRole.OWNER))
        log_activity(
            db,
            workspace_id=workspace.id,
            user_id=user.id,
            type=ActivityType.WORKSPACE_CREATED,
            message=f'Created workspace "{name}"',
        )
        await db.commit()
        logger.info(f"Workspace {workspace.id} ({workspace.slug}) created by {user.id}")
        return workspace

    @staticmethod
    async def update_workspace(db: AsyncSession, user: User, workspace_id: str, name: str) -> Workspace:
        await WorkspacePermissionService.ensure_workspace_role(db, user, workspace_id, MANAGER_ROLES)
        workspace = await WorkspaceService.get_workspace_or_404(db, workspace_id)

        name = (name or "").strip()
        if not name:
            raise HTTPException(status_code=400, detail="Workspace name is required")

        before = workspace.name
        if name != before:
            workspace.name = name
            log_activity(
                db,
                workspace_id=workspace.id,
                user_id=user.id,
                type=ActivityType.WORKSPACE_UPDATED,
                message=f'Renamed workspace "{before}" to "{name}"',
                payload={"before": {"name": before}, "after": {"name": name}},
            )
            await db.commit()
        return workspace

    @staticmethod
    async def delete_workspace(db: AsyncSession, user: User, workspace_id: str) -> None:
        await WorkspacePermissionService.ensure_workspace_role(db, user, workspace_id, OWNER_ONLY)
        await WorkspaceService.get_workspace_or_404(db, workspace_id)

        await db.execute(
            delete(Workspace)
            .where(Workspace.id == workspace_id)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        logger.info(f"Workspace {workspace_id} deleted by {user.id}")

    # --- Members ---

    @staticmethod
    async def list_members(db: AsyncSession, user: User, workspace_id: str) -> List[WorkspaceMember]:
        await WorkspacePermissionService.ensure_workspace_role(db, user, workspace_id, ALL_ROLES)
        result = await db.execute(
            select(WorkspaceMember)
            .options(selectinload(WorkspaceMember.user))
            .where(WorkspaceMember.workspace_id == workspace_id)
            .order_by(WorkspaceMember.created_at.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def update_member_role(
        db: AsyncSession, user: User, workspace_id: str, member_id: str, role: WorkspaceRole
    ) -> WorkspaceMember:
        await WorkspacePermissionService.ensure_workspace_role(db, user, workspace_id, OWNER_ONLY)
        workspace = await WorkspaceService.get_workspace_or_404(db, workspace_id)
        member = await WorkspaceService._get_member_or_404(db, workspace_id, member_id)

        before = member.role
        if before == role:
            return member

        await assert_retains_owner(db, workspace, member, role)
        member.role = role
        log_activity(
            db,
            workspace_id=workspace_id,
            user_id=user.id,
            type=ActivityType.MEMBER_ROLE_CHANGED,
            message=f"Changed {member.user.name or member.user.email} from {before.value} to {role.value}",
            payload={
                "memberId": member.id,
                "userId": member.user_id,
                "before": {"role": before.value},
                "after": {"role": role.value},
            },
        )
        await db.commit()
        return member

    @staticmethod
    async def remove_member(db: AsyncSession, user: User, workspace_id: str, member_id: str) -> None:
        caller_role = await WorkspacePermissionService.ensure_workspace_role(db, user, workspace_id, MANAGER_ROLES)
        workspace = await WorkspaceService.get_workspace_or_404(db, workspace_id)
        member = await WorkspaceService._get_member_or_404(db, workspace_id, member_id)

        if member.role == WorkspaceRole.OWNER and caller_role != WorkspaceRole.OWNER:
            raise HTTPException(status_code=403, detail="Only an owner can remove another owner")

        await assert_retains_owner(db, workspace, member, None)
        log_activity(
            db,
            workspace_id=workspace_id,
            user_id=user.id,
            type=ActivityType.MEMBER_REMOVED,
            message=f"Removed {member.user.name or member.user.email} from the workspace",
            payload={"memberId": member.id, "userId": member.user_id, "role": member.role.value},
        )
        await db.delete(member)
        await db.commit()

    # --- Invites ---

    @staticmethod
    async def create_invite(
        db: AsyncSession,
        user: User,
        workspace_id: str,
        email: str,
        role: WorkspaceRole = WorkspaceRole.MEMBER,
    ) -> WorkspaceInvite:
        await WorkspacePermissionService.ensure_workspace_role(db, user, workspace_id, MANAGER_ROLES)
        await WorkspaceService.get_workspace_or_404(db, workspace_id)
        email = email.strip().lower()

        existing_member = await db.execute(
            select(WorkspaceMember.id)
            .join(User, User.id == WorkspaceMember.user_id)
            .where(WorkspaceMember.workspace_id == workspace_id, func.lower(User.email) == email)
        )
        if existing_member.first() is not None:
            raise HTTPException(status_code=403, detail="User is already a member of this workspace")

        now = utcnow()
        result = await db.execute(
            select(WorkspaceInvite)
            .where(
                WorkspaceInvite.workspace_id == workspace_id,
                WorkspaceInvite.email == email,
                WorkspaceInvite.accepted_at.is_(None),
            )
            .order_by(WorkspaceInvite.created_at.desc())
        )
        for invite in result.scalars().all():
            if as_utc(invite.expires_at) > now:
                return invite

        invite = WorkspaceInvite(
            workspace_id=workspace_id,
            email=email,
            role=role,
            token=secrets.token_urlsafe(32),
            expires_at=now + INVITE_TTL,
        )
        db.add(invite)
        await db.commit()
        return invite

    @staticmethod
    async def list_invites(db: AsyncSession, user: User, workspace_id: str) -> List[WorkspaceInvite]:
        await WorkspacePermissionService.ensure_workspace_role(db, user, workspace_id, MANAGER_ROLES)
        result = await db.execute(
            select(WorkspaceInvite)
            .where(WorkspaceInvite.workspace_id == workspace_id, WorkspaceInvite.accepted_at.is_(None))
            .order_by(WorkspaceInvite.created_at.desc())
        )
        now = utcnow()
        return [invite for invite in result.scalars().all() if as_utc(invite.expires_at) > now]

    @staticmethod
    async def accept_invite(
        db: AsyncSession, user: User, token: str
    ) -> Tuple[WorkspaceMember, Workspace]:
        result = await db.execute(select(WorkspaceInvite).where(WorkspaceInvite.token == token))
        invite: Optional[WorkspaceInvite] = result.scalar_one_or_none()
        if invite is None:
            raise HTTPException(status_code=404, detail="Invite not found")
        if invite.accepted_at is not None:
            raise HTTPException(status_code=403, detail="Invite has already been accepted")
        if as_utc(invite.expires_at) <= utcnow():
            raise HTTPException(status_code=403, detail="Invite has expired")

        result = await db.execute(
            select(WorkspaceMember.id).where(
                WorkspaceMember.workspace_id == invite.workspace_id,
                WorkspaceMember.user_id == user.id,
            )
        )
        if result.first() is not None:
            raise HTTPException(status_code=403, detail="You are already a member of this workspace")

        workspace = await WorkspaceService.get_workspace_or_404(db, invite.workspace_id)
        member = WorkspaceMember(workspace_id=invite.workspace_id, user=user, role=invite.role)
        db.add(member)
        invite.accepted_at = utcnow()
        log_activity(
            db,
            workspace_id=invite.workspace_id,
            user_id=user.id,
            type=ActivityType.MEMBER_JOINED,
            message=f"{user.name or user.email} joined the workspace as {invite.role.value}",
            payload={"inviteId": invite.id, "role": invite.role.value},
        )
        await db.commit()
        logger.info(f"User {user.id} joined workspace {invite.workspace_id} via invite {invite.id}")
        return member, workspace
