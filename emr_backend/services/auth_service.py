"""
Authentication Service
JWT sessions for EMR users. API clients send the token as a Bearer header;
browser redirects (SMART authorize and callback) rely on the session cookie.
"""
import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import bcrypt
from jose import JWTError, jwt
from fastapi import HTTPException, status, Depends, Request, Response
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from emr_backend.config import settings
from emr_backend.database.connection import get_db
from emr_backend.database.models import User, UserRole


SECRET_KEY = settings.JWT_SECRET_KEY or secrets.token_urlsafe(32)
ALGORITHM = "HS256"
SESSION_COOKIE = "emr_session"

security = HTTPBearer(auto_error=False)


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


class AuthService:
    """Password checks, token issue/verify and user resolution"""

    def hash_password(self, password: str) -> str:
        return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        try:
            return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))
        except ValueError:
            # Malformed stored hash
            return False

    def create_access_token(self, data: dict, expires_delta: timedelta = None) -> str:
        lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        claims = {**data, "exp": datetime.utcnow() + lifetime}
        return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)

    def issue_session_token(self, user: User) -> str:
        """Token whose subject is the username and which carries the role for clients"""
        return self.create_access_token({"sub": user.username, "role": user.role.value})

    def decode_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Claims of a valid token, None for a bad signature or an expired token"""
        try:
            return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except JWTError:
            return None

    def authenticate_user(self, db: Session, username: str, password: str) -> Optional[User]:
        """The active user matching the credentials; stamps last_login"""
        user = db.query(User).filter(User.username == username).first()
        if user is None or not user.is_active or not self.verify_password(password, user.password_hash):
            return None

        user.last_login = datetime.utcnow()
        db.commit()
        return user

    def user_for_token(self, db: Session, token: Optional[str]) -> Optional[User]:
        if not token:
            return None
        claims = self.decode_token(token)
        username = claims.get("sub") if claims else None
        if not username:
            return None
        user = db.query(User).filter(User.username == username).first()
        return user if user is not None and user.is_active else None

    def get_current_user(
        self,
        request: Request,
        credentials: HTTPAuthorizationCredentials = Depends(security),
        db: Session = Depends(get_db)
    ) -> User:
        # Header wins over cookie
        token = credentials.credentials if credentials else request.cookies.get(SESSION_COOKIE)
        user = self.user_for_token(db, token)
        if user is None:
            raise _unauthorized()

        request.state.user = user
        return user


auth_service = AuthService()


def set_session_cookie(response: Response, token: str):
    response.set_cookie(
        SESSION_COOKIE, token,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


def clear_session_cookie(response: Response):
    response.delete_cookie(SESSION_COOKIE)


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """FastAPI dependency for getting current user"""
    return auth_service.get_current_user(request, credentials, db)


def get_optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> Optional[User]:
    """Like get_current_user, but None instead of 401"""
    token = credentials.credentials if credentials else request.cookies.get(SESSION_COOKIE)
    user = auth_service.user_for_token(db, token)
    if user is not None:
        request.state.user = user
    return user


def require_roles(*roles: UserRole) -> Callable[..., User]:
    """Dependency factory: 403 unless the current user holds one of the roles"""
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return current_user

    return dependency


require_admin = require_roles(UserRole.ADMIN)
