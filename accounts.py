"""User registration, credential checks and the bootstrap admin account."""

import hashlib
import hmac
import secrets
import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog

from config import ADMIN_EMAIL, ADMIN_PASSWORD
from database import DocumentStore
from errors import AuthenticationError, ConflictError, ValidationError
from schemas import Identity, RegisterBody, User

logger = structlog.get_logger(__name__)


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.scrypt(password.encode(), salt=salt.encode(), n=16384, r=8, p=1, dklen=64)
    return f"{salt}:{digest.hex()}"


def verify_password(password: str, hashed_value: str) -> bool:
    salt, _, expected = str(hashed_value or "").partition(":")
    if not salt or not expected:
        return False
    candidate = hash_password(password, salt).partition(":")[2]
    return hmac.compare_digest(candidate, expected)


def find_user_by_email(document: dict, email: str) -> Optional[dict]:
    email = email.strip().lower()
    return next((u for u in document["users"] if u["email"].lower() == email), None)


def new_user(name: str, email: str, password: str, is_admin: bool = False) -> User:
    return User(
        id=f"u_{uuid.uuid4()}",
        name=name.strip(),
        email=email.strip().lower(),
        password_hash=hash_password(password),
        is_admin=is_admin,
        created_at=datetime.now(timezone.utc).isoformat(),
    )


async def register_user(store: DocumentStore, body: RegisterBody) -> User:
    if not body.name.strip():
        raise ValidationError("Name is required")
    user = new_user(body.name, body.email, body.password)

    def add(document: dict) -> User:
        if find_user_by_email(document, user.email):
            raise ConflictError("Email already exists")
        document["users"].append(user.model_dump())
        return user

    await store.update(add)
    logger.info("user_registered", user_id=user.id)
    return user


async def authenticate(store: DocumentStore, email: str, password: str) -> Identity:
    document = await store.snapshot()
    user = find_user_by_email(document, email)
    if not user or not verify_password(password, user.get("password_hash")):
        raise AuthenticationError("Invalid credentials")
    return Identity(id=user["id"], name=user["name"], email=user["email"], is_admin=user.get("is_admin", False))


async def ensure_admin_user(store: DocumentStore) -> bool:
    """Create the configured admin account if it does not exist yet."""
    if "@" not in ADMIN_EMAIL:
        raise ValueError(f"ADMIN_EMAIL is not an email address: {ADMIN_EMAIL!r}")
    document = await store.snapshot()
    if find_user_by_email(document, ADMIN_EMAIL):
        return False
    admin = new_user("Admin", ADMIN_EMAIL, ADMIN_PASSWORD, is_admin=True)

    def add(document: dict) -> None:
        if not find_user_by_email(document, admin.email):
            document["users"].append(admin.model_dump())

    await store.update(add)
    logger.info("admin_seeded", email=admin.email)
    return True
