"""FastAPI dependencies for authentication and authorization.

Dependencies:
  get_token_claims       → decode the bearer JWT issued by the auth service
  get_session_context    → load the caller's profile, return SessionContext
  require_role(...)      → restrict to specific roles
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from factorchain.auth.context import SessionContext
from factorchain.auth.jwt import decode_token
from factorchain.database import get_db
from factorchain.models.profile import Profile, ProfileRole

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/v1/token")


async def get_token_claims(token: str = Depends(oauth2_scheme)) -> dict:
    """Return the verified claims of the bearer token (401 if invalid)."""
    payload = decode_token(token)
    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload


async def get_session_context(
    claims: dict = Depends(get_token_claims),
    db: AsyncSession = Depends(get_db),
) -> SessionContext:
    """Resolve the caller's profile into an explicit session context.

    Raises 403 if the user has signed up but has no profile yet.
    """
    result = await db.execute(select(Profile).where(Profile.id == claims["sub"]))
    profile = result.scalar_one_or_none()
    if not profile:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No profile found — complete your profile first",
        )

    return SessionContext(
        user_id=profile.id,
        email=profile.email,
        role=ProfileRole(profile.role),
        wallet_address=profile.wallet_address,
    )


def require_role(*roles: ProfileRole):
    """Dependency factory — restrict to one or more roles.

    Usage:
        @router.get("/marketplace")
        async def marketplace(ctx: SessionContext = Depends(require_role(ProfileRole.INVESTOR))):
            ...
    """
    async def _check(ctx: SessionContext = Depends(get_session_context)) -> SessionContext:
        if ctx.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {', '.join(r.value for r in roles)}",
            )
        return ctx

    return _check
