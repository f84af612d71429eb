# tests/test_projects.py — Project CRUD, archiving, cascading delete
import pytest
from httpx import AsyncClient
from sqlalchemy import select, func

from models import (
    Workspace, WorkspaceMember, WorkspaceRole, Project, Task, Subtask, TaskAssignee,
    ActivityLog, ActivityType,
)
from tests.conftest import create_task, get_auth_headers


class TestCreateProject:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fixture,expected", [
        ("owner_user", 201), ("admin_user", 201), ("member_user", 201),
        ("viewer_user", 403), ("outsider_user", 403),
    ])
    async def test_create_by_role(self, request, client: AsyncClient, workspace, outsider_user, fixture, expected):
        user = request.getfixturevalue(fixture)
        resp = await client.post(
            "/projects",
            json={"workspaceId": workspace.id, "name": "Mobile app"},
            headers=get_auth_headers(user),
        )
        assert resp.status_code == expected

    @pytest.mark.asyncio
    async def test_create_returns_project_and_logs(self, client: AsyncClient, db_session, workspace, member_user):
        resp = await client.post(
            "/projects",
            json={"workspaceId": workspace.id, "name": "  Mobile app ", "description": "iOS first"},
            headers=get_auth_headers(member_user),
        )
        project = resp.json()["project"]
        assert project["name"] == "Mobile app"
        assert project["description"] == "iOS first"
        assert project["archived"] is False
        assert project["workspaceId"] == workspace.id

        row = (await db_session.execute(
            select(ActivityLog.type, ActivityLog.user_id).where(ActivityLog.project_id == project["id"])
        )).one()
        assert row == (ActivityType.PROJECT_CREATED, member_user.id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "x" * 121])
    async def test_name_validation(self, client: AsyncClient, workspace, owner_user, name):
        resp = await client.post(
            "/projects", json={"workspaceId": workspace.id, "name": name}, headers=get_auth_headers(owner_user)
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_description_too_long(self, client: AsyncClient, workspace, owner_user):
        resp = await client.post(
            "/projects",
            json={"workspaceId": workspace.id, "name": "Ok", "description": "d" * 1001},
            headers=get_auth_headers(owner_user),
        )
        assert resp.status_code == 400


class TestReadProjects:

    @pytest.mark.asyncio
    async def test_list_for_viewer(self, client: AsyncClient, db_session, workspace, project, viewer_user):
        db_session.add(Project(workspace_id=workspace.id, name="Old site", archived=True))
        await db_session.commit()

        resp = await client.get(
            "/projects", params={"workspaceId": workspace.id}, headers=get_auth_headers(viewer_user)
        )
        assert resp.status_code == 200
        assert {p["name"] for p in resp.json()["projects"]} == {"Website relaunch", "Old site"}

        resp = await client.get(
            "/projects",
            params={"workspaceId": workspace.id, "includeArchived": "false"},
            headers=get_auth_headers(viewer_user),
        )
        assert [p["name"] for p in resp.json()["projects"]] == ["Website relaunch"]

    @pytest.mark.asyncio
    async def test_outsider_cannot_list(self, client: AsyncClient, workspace, outsider_user):
        resp = await client.get(
            "/projects", params={"workspaceId": workspace.id}, headers=get_auth_headers(outsider_user)
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_get_project(self, client: AsyncClient, project, viewer_user):
        resp = await client.get(f"/projects/{project.id}", headers=get_auth_headers(viewer_user))
        assert resp.status_code == 200
        assert resp.json()["project"]["id"] == project.id

    @pytest.mark.asyncio
    async def test_unknown_project_is_403(self, client: AsyncClient, owner_user):
        resp = await client.get("/projects/nope", headers=get_auth_headers(owner_user))
        assert resp.status_code == 403
        assert resp.json()["message"] == "Project not found"


class TestUpdateProject:

    @pytest.mark.asyncio
    async def test_member_updates_with_before_after(self, client: AsyncClient, db_session, project, member_user):
        resp = await client.patch(
            f"/projects/{project.id}",
            json={"name": "Website v2", "description": "Q4 relaunch"},
            headers=get_auth_headers(member_user),
        )
        assert resp.status_code == 200
        assert resp.json()["project"]["name"] == "Website v2"

        payload = await db_session.scalar(
            select(ActivityLog.payload).where(ActivityLog.type == ActivityType.PROJECT_UPDATED)
        )
        assert payload["before"] == {"name": "Website relaunch", "description": "Q3 relaunch"}
        assert payload["after"] == {"name": "Website v2", "description": "Q4 relaunch"}

    @pytest.mark.asyncio
    async def test_no_change_logs_nothing(self, client: AsyncClient, db_session, project, owner_user):
        resp = await client.patch(
            f"/projects/{project.id}", json={"name": "Website relaunch"}, headers=get_auth_headers(owner_user)
        )
        assert resp.status_code == 200
        count = await db_session.scalar(
            select(func.count(ActivityLog.id)).where(ActivityLog.type == ActivityType.PROJECT_UPDATED)
        )
        assert count == 0

    @pytest.mark.asyncio
    async def test_member_can_toggle_archived_through_update(
        self, client: AsyncClient, db_session, project, member_user
    ):
        resp = await client.patch(
            f"/projects/{project.id}", json={"archived": True}, headers=get_auth_headers(member_user)
        )
        assert resp.status_code == 200
        assert resp.json()["project"]["archived"] is True

        payload = await db_session.scalar(
            select(ActivityLog.payload).where(ActivityLog.type == ActivityType.PROJECT_UPDATED)
        )
        assert payload == {"before": {"archived": False}, "after": {"archived": True}}

    @pytest.mark.asyncio
    async def test_viewer_cannot_update(self, client: AsyncClient, project, viewer_user):
        resp = await client.patch(
            f"/projects/{project.id}", json={"name": "Nope"}, headers=get_auth_headers(viewer_user)
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_workspace_id_in_body_does_not_grant_access(
        self, client: AsyncClient, db_session, project, outsider_user
    ):
        own = Workspace(name="Mine", slug="mine-test", owner_id=outsider_user.id)
        db_session.add(own)
        await db_session.flush()
        db_session.add(WorkspaceMember(workspace_id=own.id, user_id=outsider_user.id, role=WorkspaceRole.OWNER))
        await db_session.commit()

        resp = await client.patch(
            f"/projects/{project.id}",
            json={"workspaceId": own.id, "name": "Hijacked"},
            headers=get_auth_headers(outsider_user),
        )
        assert resp.status_code == 403
        name = await db_session.scalar(select(Project.name).where(Project.id == project.id))
        assert name == "Website relaunch"


class TestArchiveProject:

    @pytest.mark.asyncio
    async def test_admin_archives(self, client: AsyncClient, db_session, project, admin_user):
        resp = await client.patch(f"/projects/{project.id}/archive", headers=get_auth_headers(admin_user))
        assert resp.status_code == 200
        assert resp.json()["project"]["archived"] is True

        logged = await db_session.scalar(
            select(func.count(ActivityLog.id)).where(ActivityLog.type == ActivityType.PROJECT_ARCHIVED)
        )
        assert logged == 1

    @pytest.mark.asyncio
    async def test_member_cannot_archive(self, client: AsyncClient, project, member_user):
        resp = await client.patch(f"/projects/{project.id}/archive", headers=get_auth_headers(member_user))
        assert resp.status_code == 403


class TestDeleteProject:

    @pytest.mark.asyncio
    async def test_member_cannot_delete(self, client: AsyncClient, project, member_user):
        resp = await client.delete(f"/projects/{project.id}", headers=get_auth_headers(member_user))
        assert resp.status_code == 403

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fixture", ["owner_user", "admin_user"])
    async def test_manager_deletes_with_cascade(
        self, request, client: AsyncClient, db_session, workspace, project, member_user, fixture
    ):
        user = request.getfixturevalue(fixture)
        parent = await create_task(db_session, project, "Build pages")
        child = await create_task(db_session, project, "Contact page", parent_task_id=parent.id)
        db_session.add(Subtask(task_id=parent.id, title="Header"))
        db_session.add(TaskAssignee(task_id=child.id, user_id=member_user.id))
        db_session.add(ActivityLog(
            workspace_id=workspace.id, project_id=project.id, task_id=parent.id,
            user_id=member_user.id, type=ActivityType.TASK_CREATED, message="seed",
        ))
        await db_session.commit()

        resp = await client.delete(f"/projects/{project.id}", headers=get_auth_headers(user))
        assert resp.status_code == 200
        assert resp.json() == {"success": True}

        assert await db_session.scalar(select(func.count(Project.id))) == 0
        assert await db_session.scalar(select(func.count(Task.id))) == 0
        assert await db_session.scalar(select(func.count(Subtask.id))) == 0
        assert await db_session.scalar(select(func.count(TaskAssignee.id))) == 0

        rows = (await db_session.execute(
            select(ActivityLog.type, ActivityLog.project_id, ActivityLog.payload)
            .where(ActivityLog.workspace_id == workspace.id)
        )).all()
        assert rows == [(ActivityType.PROJECT_DELETED, None, {"name": "Website relaunch"})]
