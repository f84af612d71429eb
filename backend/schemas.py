# schemas.py — Response models shared across routers
# camelCase on the wire, snake_case in Python, read straight off ORM rows

from datetime import datetime
from typing import Optional, List, Any, Dict

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from models import WorkspaceRole, TaskStatus, TaskPriority, TaskType, ActivityType


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class UserOut(CamelModel):
    id: str
    auth0_id: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserSummary(CamelModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    picture: Optional[str] = None


class WorkspaceOut(CamelModel):
    id: str
    name: str
    slug: str
    owner_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MemberOut(CamelModel):
    id: str
    workspace_id: str
    user_id: str
    role: WorkspaceRole
    created_at: Optional[datetime] = None
    user: Optional[UserSummary] = None


class InviteOut(CamelModel):
    id: str
    workspace_id: str
    email: str
    role: WorkspaceRole
    token: str
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ProjectOut(CamelModel):
    id: str
    workspace_id: str
    name: str
    description: Optional[str] = None
    archived: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SubtaskOut(CamelModel):
    id: str
    task_id: str
    title: str
    is_completed: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AssigneeOut(CamelModel):
    user_id: str
    user: Optional[UserSummary] = None


class TaskOut(CamelModel):
    id: str
    project_id: str
    parent_task_id: Optional[str] = None
    created_by_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: TaskPriority
    type: TaskType
    order_index: int
    estimate_minutes: Optional[int] = None
    due_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    subtasks: List[SubtaskOut] = []
    assignees: List[AssigneeOut] = []


class ProjectRef(CamelModel):
    id: str
    name: str


class TaskRef(CamelModel):
    id: str
    title: str


class ActivityOut(CamelModel):
    id: str
    workspace_id: str
    project_id: Optional[str] = None
    task_id: Optional[str] = None
    user_id: Optional[str] = None
    type: ActivityType
    message: str
    payload: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    project: Optional[ProjectRef] = None
    task: Optional[TaskRef] = None
    user: Optional[UserSummary] = None
