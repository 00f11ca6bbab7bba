"""Authentication API routes."""

import logging
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, status

from libris.api.schemas import (
    LoginRequest,
    MeResponse,
    ProfileResponse,
    ProfileUpdateRequest,
    SignupRequest,
    TokenResponse,
)
from libris.core.dependencies import CurrentIdentity, get_auth_service, get_token_claims
from libris.services.auth_service import AuthService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]


@router.post("/signup", response_model=ProfileResponse, status_code=status.HTTP_201_CREATED)
async def signup(body: SignupRequest, auth_service: AuthServiceDep) -> ProfileResponse:
    """Register a new member."""
    profile = await auth_service.signup(body.email, body.password, body.full_name)
    return ProfileResponse.model_validate(profile)


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, auth_service: AuthServiceDep) -> TokenResponse:
    """Authenticate and return JWT."""
    token = await auth_service.login(body.email, body.password)
    return TokenResponse(access_token=token)


@router.get("/profile", response_model=MeResponse)
async def get_profile(identity: CurrentIdentity, auth_service: AuthServiceDep) -> MeResponse:
    """Get the authenticated member's profile and role."""
    profile = await auth_service.get_profile(identity)
    return MeResponse(**ProfileResponse.model_validate(profile).model_dump(), role=identity.role)


@router.put("/profile", response_model=ProfileResponse)
async def update_profile(
    body: ProfileUpdateRequest,
    identity: CurrentIdentity,
    auth_service: AuthServiceDep,
) -> ProfileResponse:
    profile = await auth_service.update_profile(identity, body.full_name, body.avatar_url)
    return ProfileResponse.model_validate(profile)


@router.post("/signout", status_code=status.HTTP_200_OK)
async def signout(
    identity: CurrentIdentity,
    claims: Annotated[Optional[dict[str, Any]], Depends(get_token_claims)],
    auth_service: AuthServiceDep,
) -> dict:
    """Sign out the current member.

    The token's ``jti`` goes on the Redis revocation list for the rest of
    the token's lifetime, so it is rejected from now on.
    """
    await auth_service.sign_out(claims or {})
    return {"detail": "Successfully signed out"}
