"""
Authentication API Routes
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from emr_backend.database.connection import get_db
from emr_backend.database.models import User
from emr_backend.services.auth_service import (
    auth_service, clear_session_cookie, get_current_user, set_session_cookie
)
from emr_backend.services.audit_service import AuditAction, audit_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict


def _user_dict(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "full_name": user.full_name,
        "role": user.role.value,
        "email": user.email,
    }


@router.post("/login", response_model=LoginResponse)
async def login(
    request: Request,
    login_data: LoginRequest,
    db: Session = Depends(get_db)
):
    """
    Login with username and password.
    Returns a JWT for API calls and sets it as the session cookie for browser redirects.
    """
    user = auth_service.authenticate_user(db, login_data.username, login_data.password)

    if not user:
        logger.warning(f"Failed login attempt for username: {login_data.username}")
        raise HTTPException(status_code=401, detail="Invalid username or password")

    token = auth_service.issue_session_token(user)

    audit_service.log_event(
        user_id=user.id,
        user_name=user.full_name,
        user_role=user.role.value,
        action=AuditAction.LOGIN,
        resource="auth",
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )

    response = JSONResponse({
        "access_token": token,
        "token_type": "bearer",
        "user": _user_dict(user),
    })
    set_session_cookie(response, token)
    return response


@router.post("/logout")
async def logout(
    request: Request,
    current_user: User = Depends(get_current_user)
):
    audit_service.log_event(
        user_id=current_user.id,
        user_name=current_user.full_name,
        user_role=current_user.role.value,
        action=AuditAction.LOGOUT,
        resource="auth",
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    response = JSONResponse({"message": "Logged out successfully"})
    clear_session_cookie(response)
    return response


@router.get("/me")
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current user information"""
    return _user_dict(current_user)
