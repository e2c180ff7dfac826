"""
Identity: registration, login, bearer tokens and role checks.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

import config
from database import Store, get_store
from errors import Conflict, Forbidden, Unauthorized
from schemas import User

logger = logging.getLogger("storefront")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

# Verified against when the email is unknown so both login failures cost the same
_DUMMY_HASH = pwd_context.hash("storefront-dummy-password")


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def public_user(user: dict) -> dict:
    return {k: v for k, v in user.items() if k != "password_hash"}


def create_access_token(user: dict, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=config.ACCESS_TOKEN_EXPIRE_DAYS))
    to_encode = {"sub": user["_id"], "role": user.get("role", "customer"), "exp": expire}
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def register(store: Store, name: str, email: str, password: str, phone: Optional[str] = None) -> Tuple[str, dict]:
    email = email.lower()
    if store.get_user_by_email(email):
        raise Conflict("Email already registered")
    user = store.insert_user(User(
        name=name,
        email=email,
        phone=phone,
        password_hash=get_password_hash(password),
    ))
    logger.info(f"registered user {email}")
    return create_access_token(user), public_user(user)


def login(store: Store, email: str, password: str) -> Tuple[str, dict]:
    user = store.get_user_by_email(email.lower())
    if user is None:
        verify_password(password, _DUMMY_HASH)
        logger.info(f"failed login for {email}")
        raise Unauthorized("Invalid credentials")
    if not verify_password(password, user.get("password_hash", "")):
        logger.info(f"failed login for {email}")
        raise Unauthorized("Invalid credentials")
    return create_access_token(user), public_user(user)


def authenticate(store: Store, token: str) -> dict:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError:
        raise Unauthorized("Invalid token")
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized("Invalid token")
    user = store.get_user(user_id)
    if user is None:
        raise Unauthorized("Invalid token")
    return public_user(user)


def require_role(user: dict, role: str) -> dict:
    if user.get("role") != role:
        raise Forbidden("Admin access required" if role == "admin" else f"{role} access required")
    return user


def ensure_admin(store: Store, email: str, password: str, name: str = "Administrator") -> dict:
    """Create the configured admin account unless a user with that email exists."""
    email = email.lower()
    existing = store.get_user_by_email(email)
    if existing:
        if existing.get("role") != "admin":
            logger.warning(f"{email} exists but is not an admin")
        return public_user(existing)
    user = store.insert_user(User(name=name, email=email, role="admin", password_hash=get_password_hash(password)))
    logger.info(f"created admin account {email}")
    return public_user(user)


# FastAPI dependencies

def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    store: Store = Depends(get_store),
) -> dict:
    if credentials is None or not credentials.credentials:
        raise Unauthorized("No token provided")
    return authenticate(store, credentials.credentials)


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    return require_role(user, "admin")
