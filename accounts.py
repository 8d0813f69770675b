"""
Account operations: registration, password and social login, user CRUD.
"""
import logging
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError as SchemaError
from pymongo.errors import DuplicateKeyError

import social
from database import USERS, Database, object_id, serialize_doc
from errors import AccountConflict, DuplicateKey, InvalidCredentials, NotFound, ValidationError
from schemas import User
from security import create_token, hash_password, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
ROLES = ("customer", "admin")


def schema_error_message(e: SchemaError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg"))
    return "; ".join(parts) or "Invalid input"


def _check_password(password: Optional[str]):
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def _check_role(role: Optional[str]):
    if role not in ROLES:
        raise ValidationError("Role must be customer or admin")


def user_summary(user: dict) -> dict:
    return {
        "id": str(user.get("id") or user.get("_id")),
        "email": user["email"],
        "name": user["name"],
        "role": user.get("role", "customer"),
        "profile_image": user.get("profile_image"),
    }


def _session(user: dict) -> dict:
    summary = user_summary(user)
    return {"token": create_token(summary), "user": summary}


def _insert_user(db: Database, user: User) -> dict:
    try:
        user_id = db.create_document(USERS, user)
    except DuplicateKeyError:
        if db[USERS].find_one({"email": user.email}):
            raise DuplicateKey("Email already registered")
        raise DuplicateKey("Social account already linked to another user")
    return serialize_doc(db.get_document_by_id(USERS, user_id))


# ----------------------- Registration / login -----------------------
def register(
    db: Database,
    email: str,
    name: str,
    password: str,
    role: str = "customer",
    address: Optional[str] = None,
) -> dict:
    _check_password(password)
    _check_role(role)
    try:
        user = User(
            email=email,
            name=name,
            password_hash=hash_password(password),
            role=role,
            address=address,
        )
    except SchemaError as e:
        raise ValidationError(schema_error_message(e))
    if db[USERS].find_one({"email": user.email}):
        raise DuplicateKey("Email already registered")
    created = _insert_user(db, user)
    logger.info("User registered: %s (%s)", created["id"], created["role"])
    return created


def login(db: Database, email: str, password: str) -> dict:
    user = db[USERS].find_one({"email": (email or "").strip().lower()})
    # social-only accounts have no hash and fail here like a wrong password
    if not user or not verify_password(password, user.get("password_hash")):
        raise InvalidCredentials()
    return _session(serialize_doc(user))


def social_login(db: Database, provider: str, payload) -> Tuple[dict, bool]:
    """Sign in with a social identity. Returns (session, created)."""
    identity = social.resolve_identity(provider, payload)
    email = identity["email"].strip().lower()

    user = db[USERS].find_one({"social_provider": provider, "social_id": identity["social_id"]})
    if user:
        return _session(serialize_doc(user)), False

    existing = db[USERS].find_one({"email": email})
    if existing:
        if not existing.get("social_provider"):
            raise AccountConflict("Email already registered. Please sign in with your password.")
        raise AccountConflict(f"Email already registered with {existing['social_provider']}.")

    try:
        new_user = User(
            email=email,
            name=identity["name"],
            role="customer",
            social_provider=provider,
            social_id=identity["social_id"],
            profile_image=identity.get("profile_image"),
        )
    except SchemaError as e:
        raise ValidationError(schema_error_message(e))
    created = _insert_user(db, new_user)
    logger.info("User created from %s sign-in: %s", provider, created["id"])
    return _session(created), True


def current_user(db: Database, claims: dict) -> dict:
    user = db[USERS].find_one({"_id": object_id(claims.get("id"), "user id")})
    if not user:
        raise NotFound("User not found")
    return serialize_doc(user)


# ----------------------- User CRUD -----------------------
def list_users(db: Database) -> list:
    users = db.get_documents(USERS, sort=[("created_at", -1), ("_id", -1)])
    return [serialize_doc(u) for u in users]


def get_user(db: Database, user_id: str) -> dict:
    user = db.get_document_by_id(USERS, object_id(user_id, "user id"))
    if not user:
        raise NotFound("User not found")
    return serialize_doc(user)


def update_user(db: Database, user_id: str, fields: Dict[str, Any]) -> dict:
    _id = object_id(user_id, "user id")
    update: Dict[str, Any] = {}
    if fields.get("name") is not None:
        if not fields["name"].strip():
            raise ValidationError("Name is required")
        update["name"] = fields["name"].strip()
    if fields.get("password") is not None:
        _check_password(fields["password"])
        update["password_hash"] = hash_password(fields["password"])
    if fields.get("role") is not None:
        _check_role(fields["role"])
        update["role"] = fields["role"]
    for key in ("address", "profile_image"):
        if fields.get(key) is not None:
            update[key] = fields[key]
    if not update:
        return get_user(db, user_id)
    user = db.update_document(USERS, _id, update)
    if not user:
        raise NotFound("User not found")
    return serialize_doc(user)


def delete_user(db: Database, user_id: str):
    if not db.delete_document(USERS, object_id(user_id, "user id")):
        raise NotFound("User not found")
