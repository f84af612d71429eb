# client.py — Async Python client for the TaskRythm API
# - One method per route; the workspace is always an explicit argument
# - Non-2xx answers raise APIError with a human-readable message
# - Role predicates mirroring the server's role groups, for UI gating

import re
import json
from typing import Optional, Dict, Any, List

import httpx

# "API 403 Forbidden – {...}" / "API 500 Internal Server Error - boom"
_API_PREFIX_RE = re.compile(r"^API\s+\d+\s+[^–\-{]*?\s*[–-]\s*", re.IGNORECASE)


def normalize_error_message(raw: Optional[str]) -> str:
    """Turn a raw API error string into something fit for a toast."""
    raw = raw or "Unknown error"
    without_prefix = _API_PREFIX_RE.sub("", raw, count=1)

    json_start = without_prefix.find("{")
    if json_start != -1:
        try:
            parsed = json.loads(without_prefix[json_start:])
        except ValueError:
            parsed = None
        if isinstance(parsed, dict) and parsed.get("message"):
            message = parsed["message"]
            if isinstance(message, list):
                return ", ".join(str(m) for m in message)
            return str(message)

    return without_prefix.strip() or raw


class APIError(Exception):
    def __init__(self, status_code: int, message: str, raw: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.raw = raw

    def __str__(self):
        return f"{self.status_code}: {self.message}"


# --- Role predicates ---

def can_view_workspace(role: Optional[str]) -> bool:
    return bool(role)


def can_manage_tasks(role: Optional[str]) -> bool:
    return role in ("OWNER", "ADMIN", "MEMBER")


def can_manage_projects(role: Optional[str]) -> bool:
    return role in ("OWNER", "ADMIN", "MEMBER")


def can_archive_projects(role: Optional[str]) -> bool:
    return role in ("OWNER", "ADMIN")


def can_invite_members(role: Optional[str]) -> bool:
    return role in ("OWNER", "ADMIN")


def can_manage_members(role: Optional[str]) -> bool:
    return role == "OWNER"


class TaskRythmClient:
    """Bearer-authenticated client. Use as ``async with TaskRythmClient(...) as api:``."""

    def __init__(
        self,
        base_url: str,
        token: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
            timeout=timeout,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        resp = await self._client.request(method, path, json=json_body, params=params)
        if resp.is_error:
            raw = f"API {resp.status_code} {resp.reason_phrase} – {resp.text}"
            raise APIError(resp.status_code, normalize_error_message(raw), raw)
        if not resp.content:
            return None
        return resp.json()

    # --- Auth ---

    async def me(self) -> Dict[str, Any]:
        return await self._request("GET", "/auth/me")

    # --- Workspaces ---

    async def list_workspaces(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/workspaces")

    async def create_workspace(self, name: str) -> Dict[str, Any]:
        return await self._request("POST", "/workspaces", {"name": name})

    async def update_workspace(self, workspace_id: str, name: str) -> Dict[str, Any]:
        return await self._request("PATCH", f"/workspaces/{workspace_id}", {"name": name})

    async def delete_workspace(self, workspace_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"/workspaces/{workspace_id}")

    async def list_members(self, workspace_id: str) -> List[Dict[str, Any]]:
        return await self._request("GET", f"/workspaces/{workspace_id}/members")

    async def update_member_role(self, workspace_id: str, member_id: str, role: str) -> Dict[str, Any]:
        return await self._request(
            "PATCH", f"/workspaces/{workspace_id}/members/{member_id}", {"role": role}
        )

    async def remove_member(self, workspace_id: str, member_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"/workspaces/{workspace_id}/members/{member_id}")

    async def create_invite(self, workspace_id: str, email: str, role: str = "MEMBER") -> Dict[str, Any]:
        return await self._request(
            "POST", f"/workspaces/{workspace_id}/invites", {"email": email, "role": role}
        )

    async def list_invites(self, workspace_id: str) -> List[Dict[str, Any]]:
        return await self._request("GET", f"/workspaces/{workspace_id}/invites")

    async def accept_invite(self, token: str) -> Dict[str, Any]:
        return await self._request("POST", f"/workspaces/invites/{token}/accept")

    # --- Projects ---

    async def list_projects(self, workspace_id: str, include_archived: bool = True) -> List[Dict[str, Any]]:
        data = await self._request(
            "GET", "/projects",
            params={"workspaceId": workspace_id, "includeArchived": str(include_archived).lower()},
        )
        return data["projects"]

    async def create_project(
        self, workspace_id: str, name: str, description: Optional[str] = None
    ) -> Dict[str, Any]:
        body = {"workspaceId": workspace_id, "name": name}
        if description is not None:
            body["description"] = description
        data = await self._request("POST", "/projects", body)
        return data["project"]

    async def get_project(self, project_id: str) -> Dict[str, Any]:
        data = await self._request("GET", f"/projects/{project_id}")
        return data["project"]

    async def update_project(self, project_id: str, **changes) -> Dict[str, Any]:
        data = await self._request("PATCH", f"/projects/{project_id}", changes)
        return data["project"]

    async def archive_project(self, project_id: str) -> Dict[str, Any]:
        data = await self._request("PATCH", f"/projects/{project_id}/archive")
        return data["project"]

    async def delete_project(self, project_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"/projects/{project_id}")

    # --- Tasks ---

    async def list_tasks(self, project_id: str) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/tasks", params={"projectId": project_id})
        return data["tasks"]

    async def create_task(self, project_id: str, title: str, **fields) -> Dict[str, Any]:
        data = await self._request("POST", "/tasks", {"projectId": project_id, "title": title, **fields})
        return data["task"]

    async def get_task(self, task_id: str) -> Dict[str, Any]:
        data = await self._request("GET", f"/tasks/{task_id}")
        return data["task"]

    async def update_task(self, task_id: str, **changes) -> Dict[str, Any]:
        data = await self._request("PATCH", f"/tasks/{task_id}", changes)
        return data["task"]

    async def delete_task(self, task_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"/tasks/{task_id}")

    async def create_subtask(self, task_id: str, title: str) -> Dict[str, Any]:
        data = await self._request("POST", f"/tasks/{task_id}/subtasks", {"title": title})
        return data["subtask"]

    async def update_subtask(self, subtask_id: str, **changes) -> Dict[str, Any]:
        data = await self._request("PATCH", f"/tasks/subtasks/{subtask_id}", changes)
        return data["subtask"]

    async def delete_subtask(self, subtask_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"/tasks/subtasks/{subtask_id}")

    # --- Activity ---

    async def workspace_activity(self, workspace_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        data = await self._request("GET", f"/activity/workspace/{workspace_id}", params={"limit": limit})
        return data["activity"]

    async def project_activity(self, project_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        data = await self._request("GET", f"/activity/project/{project_id}", params={"limit": limit})
        return data["activity"]

    # --- AI ---

    async def generate_plan(self, prompt: str) -> Any:
        return await self._request("POST", "/ai/generate-plan", {"prompt": prompt})

    async def refine_task(self, task_title: str) -> Any:
        return await self._request("POST", "/ai/refine-task", {"taskTitle": task_title})

    async def analyze_project(self, tasks: List[Dict[str, Any]]) -> Any:
        return await self._request("POST", "/ai/analyze-project", {"tasks": tasks})

    async def write_report(self, tasks: List[Dict[str, Any]]) -> Any:
        return await self._request("POST", "/ai/write-report", {"tasks": tasks})

    async def chat(self, question: str, tasks: List[Dict[str, Any]]) -> Any:
        return await self._request("POST", "/ai/chat", {"question": question, "tasks": tasks})
