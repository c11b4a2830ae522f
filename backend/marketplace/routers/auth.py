from fastapi import APIRouter, Depends, HTTPException

from marketplace.auth import DEMO_PASSWORD, create_access_token, require_authenticated_user
from marketplace.models import AuthLoginRequest, AuthLoginResponse, AuthMeResponse, User, UserRegisterRequest
from marketplace.routers.common import raise_http_error
from marketplace.services.errors import MarketplaceError
from marketplace.services.identity_store import identity_store

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=User)
def register(payload: UserRegisterRequest):
    try:
        return identity_store.create_user(
            email=payload.email,
            name=payload.name,
            phone=payload.phone,
            role=payload.role,
        )
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.post("/login", response_model=AuthLoginResponse)
def login(payload: AuthLoginRequest):
    email = payload.email.strip()
    if not email:
        raise HTTPException(status_code=400, detail="email is required")
    user = identity_store.find_by_email(email)
    if not user or payload.password != DEMO_PASSWORD:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token, expires_at = create_access_token(user_id=user.id)
    return AuthLoginResponse(access_token=token, user_id=user.id, role=user.role, expires_at=expires_at)


@router.get("/me", response_model=AuthMeResponse)
def me(user_id: str = Depends(require_authenticated_user)):
    user = identity_store.find_user(user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Unknown user")
    return AuthMeResponse(user=user)
