"""Auth endpoints for UI shells driving the local session."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from .models import PasswordCredentials, Profile, Role, SignUpRequest, SynchronizedAuthState
from .runtime import StudyhallRuntime, get_runtime

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger(__name__)


class AuthStatePayload(BaseModel):
    user_id: Optional[str] = None
    email: Optional[str] = None
    display_name: Optional[str] = None
    role: Optional[Role] = None
    profile: Optional[Profile] = None
    is_ready: bool
    is_authenticating: bool
    is_authenticated: bool

    @classmethod
    def from_state(cls, state: SynchronizedAuthState) -> "AuthStatePayload":
        email = state.principal.email if state.principal else None
        display_name = None
        if state.profile is not None:
            display_name = state.profile.display_name(email)
        elif email:
            display_name = email.split("@", 1)[0]
        return cls(
            user_id=state.user_id,
            email=email,
            display_name=display_name,
            role=state.role,
            profile=state.profile,
            is_ready=state.is_ready,
            is_authenticating=state.is_authenticating,
            is_authenticated=state.is_authenticated,
        )


@router.get("/state", response_model=AuthStatePayload)
async def read_auth_state(runtime: StudyhallRuntime = Depends(get_runtime)) -> AuthStatePayload:
    return AuthStatePayload.from_state(runtime.sync.get_state())


@router.post("/sign-in", response_model=AuthStatePayload)
async def sign_in(
    credentials: PasswordCredentials, runtime: StudyhallRuntime = Depends(get_runtime)
) -> AuthStatePayload:
    result = await runtime.sync.sign_in(credentials)
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=result.error)
    return AuthStatePayload.from_state(await runtime.sync.settle())


@router.post("/sign-up", response_model=AuthStatePayload, status_code=status.HTTP_201_CREATED)
async def sign_up(request: SignUpRequest, runtime: StudyhallRuntime = Depends(get_runtime)) -> AuthStatePayload:
    result = await runtime.sync.sign_up(request)
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    return AuthStatePayload.from_state(await runtime.sync.settle())


@router.post("/oauth/{provider}", response_model=AuthStatePayload)
async def sign_in_with_oauth(provider: str, runtime: StudyhallRuntime = Depends(get_runtime)) -> AuthStatePayload:
    result = await runtime.sync.sign_in_with_oauth(provider)
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    return AuthStatePayload.from_state(await runtime.sync.settle())


@router.post("/sign-out", response_model=AuthStatePayload)
async def sign_out(runtime: StudyhallRuntime = Depends(get_runtime)) -> AuthStatePayload:
    result = await runtime.sync.sign_out()
    if not result.ok:
        logger.warning("Sign-out reported an error: %s", result.error)
    return AuthStatePayload.from_state(await runtime.sync.settle())


__all__ = ["AuthStatePayload", "router"]
