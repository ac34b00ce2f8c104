from fastapi import APIRouter, Depends, HTTPException, Response
from jose import JWTError
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.schemas.auth import LoginRequest, RefreshRequest, TokenPair
from app.models.user import User
from app.core.security import (
    verify_password,
    create_access_token,
    create_refresh_token,
    decode_token,
    set_auth_cookie,
    clear_auth_cookie,
)
from app.api.deps import get_current_user

router = APIRouter(tags=["auth"])

def _issue(user: User, response: Response) -> TokenPair:
    access = create_access_token(user.id, role=user.role)
    set_auth_cookie(response, access)
    return TokenPair(access_token=access, refresh_token=create_refresh_token(user.id))

@router.post("/auth/login", response_model=TokenPair)
def login(body: LoginRequest, response: Response, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == body.email.lower()).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not verify_password(body.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _issue(user, response)


@router.post("/auth/refresh", response_model=TokenPair)
def refresh(body: RefreshRequest, response: Response, db: Session = Depends(get_db)):
    try:
        payload = decode_token(body.refreshToken, expected_type="refresh")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    user = db.get(User, payload.get("sub"))
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return _issue(user, response)


@router.post("/auth/logout")
def logout(response: Response):
    clear_auth_cookie(response)
    return {"ok": True}

@router.get("/auth/me")
def me(me: User = Depends(get_current_user)):
    """Return current user info including role."""
    return {
        "id": me.id,
        "email": me.email,
        "fullName": me.full_name or "",
        "role": me.role,
        "country": me.country,
        "locale": me.locale,
    }
