# auth.py — Bearer-token authentication & local identity resolution for TaskRythm
# Features:
# - RS256 access tokens issued by an external OIDC provider (Auth0)
# - Signing keys fetched from the provider's JWKS endpoint and cached in-process
# - Audience / issuer / expiry verification
# - Lazy creation of local User rows (ensure_user), linked by email on re-issued identities

import os
import time
import asyncio
import logging
from typing import Optional, Dict, Any, List

import httpx
from jose import jwt, JWTError, ExpiredSignatureError
from jose.exceptions import JWTClaimsError
from fastapi import HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, Field
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from models import User

logger = logging.getLogger("taskrythm.auth")

# ============================================================
# CONFIGURATION
# ============================================================

AUTH0_DOMAIN = os.getenv("AUTH0_DOMAIN", "")
AUTH0_ISSUER = os.getenv("AUTH0_ISSUER", f"https://{AUTH0_DOMAIN}" if AUTH0_DOMAIN else "").rstrip("/")
AUTH0_AUDIENCE = os.getenv("AUTH0_AUDIENCE", "")
JWKS_URL = f"{AUTH0_ISSUER}/.well-known/jwks.json"
JWKS_CACHE_TTL_SECONDS = int(os.getenv("JWKS_CACHE_TTL_SECONDS", "600"))
JWKS_MIN_REFRESH_SECONDS = int(os.getenv("JWKS_MIN_REFRESH_SECONDS", "6"))

ALGORITHMS = ["RS256"]

security = HTTPBearer(auto_error=False)


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class AuthUser(BaseModel):
    """Identity carried by a verified access token."""
    sub: str
    email: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None
    permissions: List[str] = Field(default_factory=list)


# ============================================================
# JWKS
# ============================================================

class JWKSCache:
    """Signing keys from the identity provider, keyed by ``kid``.

    Keys are refetched when the cache is older than ``ttl_seconds``, or when a
    token names a ``kid`` we have not seen, but never more often than once per
    ``min_refresh_seconds``.
    """

    def __init__(
        self,
        jwks_url: str,
        ttl_seconds: int = JWKS_CACHE_TTL_SECONDS,
        min_refresh_seconds: int = JWKS_MIN_REFRESH_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.jwks_url = jwks_url
        self.ttl_seconds = ttl_seconds
        self.min_refresh_seconds = min_refresh_seconds
        self._transport = transport
        self._keys: Dict[str, Dict[str, Any]] = {}
        self._fetched_at: Optional[float] = None
        self._lock = asyncio.Lock()

    def _needs_refresh(self, kid: str) -> bool:
        if self._fetched_at is None:
            return True
        age = time.monotonic() - self._fetched_at
        if age > self.ttl_seconds:
            return True
        return kid not in self._keys and age >= self.min_refresh_seconds

    async def _fetch(self) -> None:
        async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
            resp = await client.get(self.jwks_url)
            resp.raise_for_status()
            data = resp.json()
        self._keys = {k["kid"]: k for k in data.get("keys", []) if k.get("kid")}
        self._fetched_at = time.monotonic()
        logger.info(f"Loaded {len(self._keys)} signing key(s) from {self.jwks_url}")

    async def get_key(self, kid: str) -> Dict[str, Any]:
        if self._needs_refresh(kid):
            async with self._lock:
                if self._needs_refresh(kid):
                    try:
                        await self._fetch()
                    except (httpx.HTTPError, ValueError) as e:
                        logger.error(f"JWKS fetch from {self.jwks_url} failed: {e}")
                        raise HTTPException(status_code=500, detail="Unable to fetch token signing keys") from e

        key = self._keys.get(kid)
        if key is None:
            raise HTTPException(status_code=401, detail="Unknown token signing key")
        return key


jwks_cache = JWKSCache(JWKS_URL)


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Access-token verification against the identity provider's keys"""

    @staticmethod
    async def verify_token(token: str) -> Dict[str, Any]:
        try:
            header = jwt.get_unverified_header(token)
        except JWTError:
            raise HTTPException(status_code=401, detail="Invalid token")

        kid = header.get("kid")
        if not kid:
            raise HTTPException(status_code=401, detail="Invalid token")

        key = await jwks_cache.get_key(kid)

        try:
            return jwt.decode(
                token,
                key,
                algorithms=ALGORITHMS,
                audience=AUTH0_AUDIENCE or None,
                issuer=f"{AUTH0_ISSUER}/" if AUTH0_ISSUER else None,
                options={"verify_aud": bool(AUTH0_AUDIENCE)},
            )
        except ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except JWTClaimsError as e:
            raise HTTPException(status_code=401, detail=f"Invalid token claims: {e}")
        except JWTError:
            raise HTTPException(status_code=401, detail="Invalid token")


class UserService:
    """Maps external identities onto local User rows"""

    @staticmethod
    async def ensure_user(db: AsyncSession, auth_user: AuthUser) -> User:
        """Return the local User for ``auth_user``, creating or patching it as needed.

        Lookup order is external id, then email (an identity re-issued by the
        provider keeps its local row). Missing email falls back to
        ``<externalId>@placeholder.local``; missing name falls back to the
        email's local part. Fields that differ from the token are patched.
        """
        auth0_id = auth_user.sub
        if not auth0_id:
            raise HTTPException(status_code=401, detail="Missing Auth0 user id")

        email = (auth_user.email or "").strip() or None
        name = (auth_user.name or "").strip() or (email.split("@")[0] if email else None)
        picture = auth_user.picture or None

        result = await db.execute(select(User).where(User.auth0_id == auth0_id))
        user = result.scalar_one_or_none()
        changed = False

        if user is None and email:
            stmt = (
                select(User)
                .where(func.lower(User.email) == email.lower())
                .order_by(User.created_at.asc())
                .limit(1)
            )
            result = await db.execute(stmt)
            user = result.scalar_one_or_none()
            if user is not None:
                logger.info(f"Linking identity {auth0_id} to existing user {user.id} by email")
                user.auth0_id = auth0_id
                changed = True

        if user is None:
            user = User(
                auth0_id=auth0_id,
                email=email or f"{auth0_id}@placeholder.local",
                name=name,
                picture=picture,
            )
            db.add(user)
            try:
                await db.commit()
            except IntegrityError:
                # Another request created the row first
                await db.rollback()
                result = await db.execute(select(User).where(User.auth0_id == auth0_id))
                user = result.scalar_one()
            return user

        for field, value in (("email", email), ("name", name), ("picture", picture)):
            if value and getattr(user, field) != value:
                setattr(user, field, value)
                changed = True

        if changed:
            await db.commit()
        return user


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthUser:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    payload = await AuthService.verify_token(credentials.credentials)

    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Invalid token")

    return AuthUser(
        sub=sub,
        email=payload.get("email"),
        name=payload.get("name"),
        picture=payload.get("picture"),
        permissions=payload.get("permissions") or [],
    )


async def get_local_user(
    auth_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> User:
    """Dependency: the caller's local User row, created on first sight"""
    return await UserService.ensure_user(db, auth_user)


def require_permissions(*permissions: str):
    """Dependency factory: the token must carry every listed permission scope"""
    async def _check(user: AuthUser = Depends(get_current_user)) -> AuthUser:
        missing = [p for p in permissions if p not in user.permissions]
        if missing:
            raise HTTPException(
                status_code=403,
                detail=f"Missing required permission(s): {', '.join(missing)}",
            )
        return user
    return _check
