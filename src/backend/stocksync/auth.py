from dataclasses import dataclass
from fastapi import Header, HTTPException
from typing import Optional
import os
import jwt


@dataclass
class UserContext:
    user_id: str
    role: str  # owner_admin | staff | viewer
    tenant_id: str


def _from_jwt(token: str) -> UserContext:
    secret = os.getenv("JWT_SECRET", "dev_secret")
    aud = os.getenv("JWT_AUDIENCE", "authenticated")
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256", "HS512"], audience=aud)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="invalid_token")
    tenant_id = str(payload.get("tenant_id") or (payload.get("app_metadata") or {}).get("tenant_id") or "")
    if not tenant_id:
        raise HTTPException(status_code=401, detail="missing_tenant")
    return UserContext(
        user_id=str(payload.get("sub") or ""),
        role=str(payload.get("role") or "owner_admin"),
        tenant_id=tenant_id,
    )


async def get_user_context(
    x_user_id: Optional[str] = Header(default=None),
    x_role: Optional[str] = Header(default=None),
    x_tenant_id: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
) -> UserContext:
    # Prefer JWT if provided
    if authorization and authorization.lower().startswith("bearer "):
        return _from_jwt(authorization.split(" ", 1)[1])
    # Header identity is for local development and tests only
    if os.getenv("DEV_AUTH_ALLOW", "0") == "1" and x_tenant_id:
        return UserContext(user_id=x_user_id or "dev", role=x_role or "owner_admin", tenant_id=x_tenant_id)
    raise HTTPException(status_code=401, detail="unauthorized")


def require_role(ctx: UserContext, *roles: str) -> None:
    if ctx.role not in roles:
        raise HTTPException(status_code=403, detail="forbidden")
