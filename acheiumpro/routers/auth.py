from fastapi import APIRouter, Depends, HTTPException

from acheiumpro.auth import create_access_token, require_actor
from acheiumpro.models import AuthLoginRequest, AuthLoginResponse, AuthRegisterRequest, User
from acheiumpro.services.user_store import (
    UserStoreConflictError,
    UserStoreError,
    user_store,
)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=AuthLoginResponse)
def register(payload: AuthRegisterRequest):
    try:
        user = user_store.create_user(
            name=payload.name,
            email=payload.email,
            password=payload.password,
            role=payload.role,
            phone=payload.phone,
            location=payload.location,
        )
    except UserStoreConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except UserStoreError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    token, expires_at = create_access_token(user_id=user.id)
    return AuthLoginResponse(access_token=token, user=user, expires_at=expires_at)


@router.post("/login", response_model=AuthLoginResponse)
def login(payload: AuthLoginRequest):
    if not payload.email.strip():
        raise HTTPException(status_code=400, detail="email is required")
    user = user_store.authenticate(payload.email, payload.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token, expires_at = create_access_token(user_id=user.id)
    return AuthLoginResponse(access_token=token, user=user, expires_at=expires_at)


@router.get("/me", response_model=User)
def me(actor: User = Depends(require_actor)):
    return actor
