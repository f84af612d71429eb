# tests/conftest.py — Shared test fixtures
import os
import time

import httpx
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import AsyncClient, ASGITransport
from jose import jwk, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
TEST_ISSUER = "https://taskrythm.test"
TEST_AUDIENCE = "https://api.taskrythm.test"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["AUTH0_ISSUER"] = TEST_ISSUER
os.environ["AUTH0_AUDIENCE"] = TEST_AUDIENCE
os.environ["GEMINI_API_KEY"] = "test-gemini-key"
os.environ["ENVIRONMENT"] = "test"

import auth
from auth import JWKSCache
from database import get_db_session, enable_sqlite_foreign_keys
from models import Base, User, Workspace, WorkspaceMember, WorkspaceRole, Project, Task
from main import app


# ============================================================
# SIGNING KEYS
# ============================================================

TEST_KID = "test-key-1"

_private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
PRIVATE_PEM = _private_key.private_bytes(
    serialization.Encoding.PEM,
    serialization.PrivateFormat.PKCS8,
    serialization.NoEncryption(),
).decode()
PUBLIC_PEM = _private_key.public_key().public_bytes(
    serialization.Encoding.PEM,
    serialization.PublicFormat.SubjectPublicKeyInfo,
).decode()

TEST_JWKS = {
    "keys": [
        {**jwk.construct(PUBLIC_PEM, "RS256").to_dict(), "kid": TEST_KID, "use": "sig", "alg": "RS256"}
    ]
}


def make_token(
    sub: str,
    email: str = None,
    name: str = None,
    picture: str = None,
    permissions=None,
    audience: str = TEST_AUDIENCE,
    issuer: str = TEST_ISSUER + "/",
    expires_in: int = 3600,
    kid: str = TEST_KID,
    key: str = PRIVATE_PEM,
) -> str:
    now = int(time.time())
    claims = {"sub": sub, "aud": audience, "iss": issuer, "iat": now, "exp": now + expires_in}
    for claim, value in (("email", email), ("name", name), ("picture", picture), ("permissions", permissions)):
        if value is not None:
            claims[claim] = value
    return jwt.encode(claims, key, algorithm="RS256", headers={"kid": kid})


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token = make_token(user.auth0_id, email=user.email, name=user.name)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(autouse=True)
def jwks_endpoint(monkeypatch):
    """Serve TEST_JWKS from the identity provider's well-known URL; counts fetches"""
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(200, json=TEST_JWKS)

    cache = JWKSCache(auth.JWKS_URL, transport=httpx.MockTransport(handler))
    monkeypatch.setattr(auth, "jwks_cache", cache)
    return calls


# ============================================================
# DATABASE & CLIENT
# ============================================================

@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    enable_sqlite_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ============================================================
# USERS, WORKSPACE, PROJECT
# ============================================================

async def _create_user(db_session, key: str, name: str) -> User:
    user = User(auth0_id=f"auth0|{key}", email=f"{key}@taskrythm.dev", name=name)
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def owner_user(db_session):
    return await _create_user(db_session, "owner", "Olivia Owner")


@pytest_asyncio.fixture
async def admin_user(db_session):
    return await _create_user(db_session, "admin", "Adam Admin")


@pytest_asyncio.fixture
async def member_user(db_session):
    return await _create_user(db_session, "member", "Mia Member")


@pytest_asyncio.fixture
async def viewer_user(db_session):
    return await _create_user(db_session, "viewer", "Victor Viewer")


@pytest_asyncio.fixture
async def outsider_user(db_session):
    return await _create_user(db_session, "outsider", "Oscar Outsider")


@pytest_asyncio.fixture
async def workspace(db_session, owner_user, admin_user, member_user, viewer_user):
    """Workspace with one member per role"""
    ws = Workspace(name="Acme", slug="acme-test", owner_id=owner_user.id)
    db_session.add(ws)
    await db_session.flush()
    for user, role in (
        (owner_user, WorkspaceRole.OWNER),
        (admin_user, WorkspaceRole.ADMIN),
        (member_user, WorkspaceRole.MEMBER),
        (viewer_user, WorkspaceRole.VIEWER),
    ):
        db_session.add(WorkspaceMember(workspace_id=ws.id, user_id=user.id, role=role))
    await db_session.commit()
    return ws


@pytest_asyncio.fixture
async def project(db_session, workspace):
    proj = Project(workspace_id=workspace.id, name="Website relaunch", description="Q3 relaunch")
    db_session.add(proj)
    await db_session.commit()
    return proj


async def create_task(db_session, project: Project, title: str, **fields) -> Task:
    task = Task(project_id=project.id, title=title, **fields)
    db_session.add(task)
    await db_session.commit()
    return task


async def get_member(db_session, workspace: Workspace, user: User) -> WorkspaceMember:
    result = await db_session.execute(
        select(WorkspaceMember).where(
            WorkspaceMember.workspace_id == workspace.id,
            WorkspaceMember.user_id == user.id,
        )
    )
    return result.scalar_one()
