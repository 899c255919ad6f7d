"""FastAPI dependencies for authentication and authorization.

Dependencies:
  get_token_payload        → decode the bearer JWT (or 401)
  get_current_actor        → Actor built from the token claims
  require_permission(...)  → restrict to specific granular permissions

Users are managed by the identity service that issues tokens; this API
trusts the signed claims and never loads a user row.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from app.auth.jwt import decode_token
from app.auth.permissions import has_permission
from app.utils.activity import Actor

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


# ── Core token dependency ───────────────────────────────────

async def get_token_payload(token: str = Depends(oauth2_scheme)) -> dict:
    payload = decode_token(token)
    if not payload.get("sub") or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload


async def get_current_actor(payload: dict = Depends(get_token_payload)) -> Actor:
    return Actor(user_id=payload["sub"], user_name=payload.get("name") or payload["sub"])


# ── Permission-based access control ─────────────────────────

def require_permission(*perms: str):
    """Dependency factory — restrict to tokens that hold ALL listed permissions.

    Usage:
        @router.post("/{batch_id}/post")
        async def post(actor: Actor = Depends(require_permission("financials.write"))):
            ...
    """
    async def _check(payload: dict = Depends(get_token_payload)) -> Actor:
        user_perms: list[str] = payload.get("permissions", [])

        missing = [p for p in perms if not has_permission(user_perms, p)]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(missing)}",
            )
        return await get_current_actor(payload)

    return _check
