from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import Depends, Header
from jose import jwt, ExpiredSignatureError, JWTError

from orderflow.config import settings
from orderflow.errors import Unauthorized, Forbidden


@dataclass
class TokenUser:
    user_id: str
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"


def create_access_token(user_id: str, email: str, role: str = "USER", expires_minutes: int = None) -> str:
    expires = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes if expires_minutes is not None else settings.JWT_EXPIRES_MINUTES
    )
    claims = {"userId": user_id, "email": email, "role": role, "exp": expires}
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> TokenUser:
    """Verify a bearer token. Shared by the HTTP and WebSocket entry points."""
    if not token:
        raise Unauthorized("No token provided. Please login.")
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise Unauthorized("Token expired. Please login again.")
    except JWTError:
        raise Unauthorized("Invalid token")

    user_id = claims.get("userId")
    if not user_id:
        raise Unauthorized("Invalid token")
    return TokenUser(user_id=user_id, email=claims.get("email", ""), role=claims.get("role", "USER"))


def parse_bearer(authorization: str) -> str:
    if not authorization:
        raise Unauthorized("No token provided. Please login.")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise Unauthorized("No token provided. Please login.")
    return parts[1]


def verify_token(authorization: str = Header(None)) -> TokenUser:
    return decode_access_token(parse_bearer(authorization))


def require_admin(user: TokenUser = Depends(verify_token)) -> TokenUser:
    if not user.is_admin:
        raise Forbidden()
    return user
