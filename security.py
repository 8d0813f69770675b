"""
Password hashing, bearer tokens and the per-request access gate.
"""
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

import config
from database import USERS, Database, get_db, object_id, serialize_doc
from errors import Forbidden, InvalidId, InvalidToken, Unauthenticated

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def create_token(user: dict) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=config.JWT_EXPIRE_DAYS)
    to_encode = {"id": str(user["id"]), "email": user["email"], "role": user.get("role", "customer"), "exp": exp}
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise InvalidToken("Token expired")
    except jwt.InvalidTokenError:
        raise InvalidToken("Invalid token")


# ----------------------- Gate -----------------------
def get_token_claims(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> dict:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise Unauthenticated("Authentication token required")
    return decode_token(credentials.credentials)


def get_current_user(payload: dict = Depends(get_token_claims), db: Database = Depends(get_db)) -> dict:
    user_id = payload.get("id")
    if not user_id:
        raise InvalidToken("Invalid token payload")
    try:
        _id = object_id(user_id)
    except InvalidId:
        raise InvalidToken("Invalid token payload")
    user = db[USERS].find_one({"_id": _id})
    if not user:
        raise Unauthenticated("User not found")
    return serialize_doc(user)


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != "admin":
        raise Forbidden("Admin only")
    return user


def is_admin(user: dict) -> bool:
    return user.get("role") == "admin"
