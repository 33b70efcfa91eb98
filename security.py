import logging
from datetime import datetime, timedelta, timezone
from typing import NamedTuple, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from config import JWT_ALG, JWT_SECRET, TOKEN_EXPIRE_MIN
from database import get_db, to_object_id
from errors import AuthenticationError, AuthorizationError, ValidationError

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
auth_scheme = HTTPBearer(auto_error=False)

BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


class PasswordCheck(NamedTuple):
    matched: bool
    # fresh digest to persist when a legacy plaintext password matched
    migrated_hash: Optional[str] = None


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def is_hashed(stored: str) -> bool:
    return stored.startswith(BCRYPT_PREFIXES)


def check_password(plain: str, stored: Optional[str]) -> PasswordCheck:
    """Verify a password against either a bcrypt digest or a legacy plaintext value."""
    if not stored:
        return PasswordCheck(False)
    if is_hashed(stored):
        try:
            return PasswordCheck(pwd_context.verify(plain, stored))
        except ValueError as exc:
            logger.error("Password comparison error: %s", exc)
            return PasswordCheck(False)
    if plain == stored:
        return PasswordCheck(True, hash_password(plain))
    return PasswordCheck(False)


def create_access_token(user_id: str, expires_minutes: int = TOKEN_EXPIRE_MIN) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    return jwt.encode({"sub": str(user_id), "exp": expire}, JWT_SECRET, algorithm=JWT_ALG)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except JWTError:
        raise AuthenticationError("Not authorized, token failed")


def is_admin(user: dict) -> bool:
    return user.get("role") == "admin" or user.get("isAdmin") is True


def user_summary(user: dict) -> dict:
    return {
        "_id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role") or "user",
        "isAdmin": is_admin(user),
    }


def authenticate(token: str) -> dict:
    """Resolve a bearer token to the stored user, so role changes apply immediately."""
    payload = decode_token(token)
    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Not authorized, token failed")
    try:
        oid = to_object_id(user_id)
    except ValidationError:
        raise AuthenticationError("Not authorized, token failed")
    user = get_db()["user"].find_one({"_id": oid}, {"password": 0})
    if not user:
        raise AuthenticationError("Not authorized, token failed")
    return user


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme)) -> dict:
    if credentials is None:
        raise AuthenticationError("Not authorized, no token")
    return authenticate(credentials.credentials)


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if not is_admin(user):
        raise AuthorizationError("Not authorized as admin")
    return user
