"""Profile routes: complete sign-up, read and edit own profile.

Route overview:
  POST  /              — create the caller's profile (role, name, wallet)
  GET   /me            — the caller's profile
  PATCH /me            — update full name / wallet address
  GET   /me/dashboard  — landing view for the caller's role
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from factorchain.auth.context import SessionContext
from factorchain.auth.deps import get_session_context, get_token_claims
from factorchain.auth.permissions import dashboard_for
from factorchain.database import get_db, utcnow
from factorchain.middleware.exceptions import ProfileExists
from factorchain.models.profile import Profile
from factorchain.schemas.profile import (
    DashboardOut,
    ProfileCreate,
    ProfileOut,
    ProfileUpdate,
)

router = APIRouter()


@router.post("/", response_model=ProfileOut, status_code=status.HTTP_201_CREATED)
async def create_profile(
    body: ProfileCreate,
    claims: dict = Depends(get_token_claims),
    db: AsyncSession = Depends(get_db),
):
    email = (claims.get("email") or "").strip().lower()
    if not email:
        raise HTTPException(status_code=400, detail="Token carries no email address")

    existing = await db.execute(
        select(Profile).where(
            (Profile.id == claims["sub"]) | (func.lower(Profile.email) == email)
        )
    )
    if existing.scalar_one_or_none():
        raise ProfileExists()

    profile = Profile(
        id=claims["sub"],
        email=email,
        role=body.role.value,
        full_name=body.full_name,
        wallet_address=body.wallet_address,
    )
    db.add(profile)
    await db.flush()
    await db.refresh(profile)
    return profile


@router.get("/me", response_model=ProfileOut)
async def get_me(
    ctx: SessionContext = Depends(get_session_context),
    db: AsyncSession = Depends(get_db),
):
    return await db.get(Profile, ctx.user_id)


@router.patch("/me", response_model=ProfileOut)
async def update_me(
    body: ProfileUpdate,
    ctx: SessionContext = Depends(get_session_context),
    db: AsyncSession = Depends(get_db),
):
    profile = await db.get(Profile, ctx.user_id)
    for name, value in body.model_dump(exclude_unset=True).items():
        setattr(profile, name, value)
    profile.updated_at = utcnow()
    await db.flush()
    await db.refresh(profile)
    return profile


@router.get("/me/dashboard", response_model=DashboardOut)
async def get_dashboard(ctx: SessionContext = Depends(get_session_context)):
    return DashboardOut(role=ctx.role.value, path=dashboard_for(ctx.role))
