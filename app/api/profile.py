"""Learner profile fields shown on the leaderboards.

PATCH /v1/profile  set display name and/or country for the caller
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.api.dependencies import require_permission
from app.core.permissions import PROFILE_WRITE
from app.models.principal import Principal
from app.services.profile_service import profile_service

router = APIRouter(prefix="/v1/profile", tags=["profile"])


class UpdateProfileIn(BaseModel):
    name: str | None = Field(default=None, max_length=120)
    country: str | None = Field(default=None, max_length=64)


class ProfileOut(BaseModel):
    user_id: str
    name: str | None
    country: str | None
    points: int
    badge: str


@router.patch("", response_model=ProfileOut)
async def update_my_profile(
    body: UpdateProfileIn,
    principal: Annotated[Principal, Depends(require_permission(PROFILE_WRITE))],
) -> ProfileOut:
    name = body.name.strip() if body.name is not None else None
    if name == "":
        raise HTTPException(status_code=422, detail="name must not be empty")
    country = body.country.strip() if body.country is not None else None
    if country is not None and "/" in country:
        raise HTTPException(status_code=422, detail="country must not contain '/'")

    updated = await profile_service.update_profile(
        principal.user_id, name=name, country=country
    )
    return ProfileOut(
        user_id=updated.user_id,
        name=updated.name,
        country=updated.country,
        points=updated.points,
        badge=updated.badge,
    )
