import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from jose import jwt as jose_jwt

from .config import JWT_ALGORITHM, SECRET_KEY
from .models import UserRole

logger = logging.getLogger(__name__)

security = HTTPBearer()

ACCESS_TOKEN_EXPIRE_MINUTES = 60


@dataclass(frozen=True)
class CurrentUser:
    """Caller identity passed explicitly into every domain operation"""

    id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


def create_access_token(user_id: int, role: str, expires_delta: Optional[timedelta] = None) -> str:
    """Issue a signed token carrying the user id and role"""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": str(user_id), "rol": role, "exp": expire}
    return jose_jwt.encode(to_encode, SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_access_token(token: str) -> dict:
    """
    Verify and decode a bearer token.

    Raises:
        HTTPException: 401 if the token is malformed, expired or badly signed
    """
    try:
        return jose_jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token") from e


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    """Get current user (id + role) from the bearer token"""
    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    token = credentials.credentials
    if len(token.split(".")) != 3:
        logger.warning(f"⚠️ Malformed token received, token length: {len(token)}")
        raise HTTPException(status_code=401, detail="Invalid token format. Expected a valid JWT token.")

    payload = verify_access_token(token)

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError) as e:
        logger.error(f"❌ Token missing user ID claim. Available claims: {list(payload.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token claims") from e

    role = str(payload.get("rol") or "").upper()
    if role not in {r.value for r in UserRole}:
        logger.error(f"❌ Token carries unknown role {role!r} for user {user_id}")
        raise HTTPException(status_code=401, detail="Invalid token claims")

    logger.debug(f"✅ User authenticated: {user_id} ({role})")
    return CurrentUser(id=user_id, role=role)
