# routers/auth.py — Identity echo for signed-in clients
from fastapi import APIRouter, Depends

from auth import get_current_user, AuthUser

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.get("/me")
async def me(user: AuthUser = Depends(get_current_user)):
    """The caller's verified identity, straight from the access token"""
    return {
        "ok": True,
        "user": {
            "auth0Id": user.sub,
            "email": user.email,
            "name": user.name,
            "picture": user.picture,
            "permissions": user.permissions,
        },
    }
