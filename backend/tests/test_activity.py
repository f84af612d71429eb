# tests/test_activity.py — Workspace and project feeds
from datetime import timedelta

import pytest
from httpx import AsyncClient

from models import ActivityLog, ActivityType, Project, utcnow
from tests.conftest import create_task, get_auth_headers


async def _seed(db_session, workspace, user, count, project_id=None):
    base = utcnow() - timedelta(hours=1)
    for i in range(count):
        db_session.add(ActivityLog(
            workspace_id=workspace.id,
            project_id=project_id,
            user_id=user.id,
            type=ActivityType.TASK_UPDATED,
            message=f"event {i}",
            created_at=base + timedelta(seconds=i),
        ))
    await db_session.commit()


class TestWorkspaceFeed:

    @pytest.mark.asyncio
    async def test_newest_first_with_default_limit(self, client: AsyncClient, db_session, workspace, project, owner_user):
        await _seed(db_session, workspace, owner_user, 25)
        resp = await client.get(f"/activity/workspace/{workspace.id}", headers=get_auth_headers(owner_user))
        assert resp.status_code == 200
        feed = resp.json()["activity"]
        assert len(feed) == 20
        assert feed[0]["message"] == "event 24"
        assert feed[-1]["message"] == "event 5"

    @pytest.mark.asyncio
    async def test_limit(self, client: AsyncClient, db_session, workspace, project, viewer_user):
        await _seed(db_session, workspace, viewer_user, 5)
        resp = await client.get(
            f"/activity/workspace/{workspace.id}", params={"limit": 2}, headers=get_auth_headers(viewer_user)
        )
        assert [a["message"] for a in resp.json()["activity"]] == ["event 4", "event 3"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, 101, "many"])
    async def test_limit_bounds(self, client: AsyncClient, workspace, owner_user, limit):
        resp = await client.get(
            f"/activity/workspace/{workspace.id}", params={"limit": limit}, headers=get_auth_headers(owner_user)
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_rows_carry_references(self, client: AsyncClient, db_session, workspace, project, member_user):
        task = await create_task(db_session, project, "Ship it")
        db_session.add(ActivityLog(
            workspace_id=workspace.id, project_id=project.id, task_id=task.id, user_id=member_user.id,
            type=ActivityType.TASK_CREATED, message='Created task "Ship it"',
        ))
        await db_session.commit()

        resp = await client.get(f"/activity/workspace/{workspace.id}", headers=get_auth_headers(member_user))
        entry = resp.json()["activity"][0]
        assert entry["type"] == "TASK_CREATED"
        assert entry["project"] == {"id": project.id, "name": "Website relaunch"}
        assert entry["task"] == {"id": task.id, "title": "Ship it"}
        assert entry["user"]["name"] == "Mia Member"

    @pytest.mark.asyncio
    async def test_outsider_is_403(self, client: AsyncClient, workspace, outsider_user):
        resp = await client.get(f"/activity/workspace/{workspace.id}", headers=get_auth_headers(outsider_user))
        assert resp.status_code == 403


class TestProjectFeed:

    @pytest.mark.asyncio
    async def test_only_that_project(self, client: AsyncClient, db_session, workspace, project, owner_user):
        other = Project(workspace_id=workspace.id, name="Other")
        db_session.add(other)
        await db_session.commit()
        await _seed(db_session, workspace, owner_user, 3, project_id=project.id)
        await _seed(db_session, workspace, owner_user, 2, project_id=other.id)
        await _seed(db_session, workspace, owner_user, 1)

        resp = await client.get(f"/activity/project/{project.id}", headers=get_auth_headers(owner_user))
        assert resp.status_code == 200
        feed = resp.json()["activity"]
        assert len(feed) == 3
        assert all(a["projectId"] == project.id for a in feed)

    @pytest.mark.asyncio
    async def test_unknown_project_is_403(self, client: AsyncClient, owner_user):
        resp = await client.get("/activity/project/nope", headers=get_auth_headers(owner_user))
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_actions_show_up_in_feed(self, client: AsyncClient, project, member_user):
        headers = get_auth_headers(member_user)
        created = await client.post("/tasks", json={"projectId": project.id, "title": "Audit"}, headers=headers)
        task_id = created.json()["task"]["id"]
        await client.patch(f"/tasks/{task_id}", json={"status": "IN_PROGRESS"}, headers=headers)

        resp = await client.get(f"/activity/project/{project.id}", headers=headers)
        types = [a["type"] for a in resp.json()["activity"]]
        assert types == ["TASK_STATUS_CHANGED", "TASK_CREATED"]
