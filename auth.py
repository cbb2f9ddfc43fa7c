from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

from config import settings
from database import USERS, get_db, to_object_id
from errors import AccessDenied, Unauthenticated
from schemas import Principal, Role

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.BCRYPT_ROUNDS)
# auto_error=False so a missing header surfaces as our own 401, not Starlette's 403.
auth_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def create_access_token(user_id: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    payload = {"sub": user_id, "role": role, "exp": int(expire.timestamp())}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise Unauthenticated("Token has expired")
    except JWTError:
        raise Unauthenticated("Invalid token")


def principal_from_token(db: Database, token: Optional[str]) -> Principal:
    """
    Resolve a bearer token to the acting principal.

    The user is re-read on every call so a deleted account stops working at once
    and a role change applies without waiting for the token to expire.
    """
    if not token:
        raise Unauthenticated("Access denied. No token provided.")
    payload = decode_token(token)
    oid = to_object_id(payload.get("sub"))
    if oid is None:
        raise Unauthenticated("Invalid token")
    user = db[USERS].find_one({"_id": oid}, {"role": 1})
    if not user:
        raise Unauthenticated("User not found")
    return Principal(id=str(user["_id"]), role=Role(user.get("role", Role.USER.value)))


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    db: Database = Depends(get_db),
) -> Principal:
    return principal_from_token(db, credentials.credentials if credentials else None)


def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_admin:
        raise AccessDenied("Access denied. Admin privileges required.")
    return principal
