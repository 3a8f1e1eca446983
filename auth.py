"""
Customer identity and the admin gate.

Customers get an anonymous id on first visit; it only scopes "my orders"
and the cart. Admin access is a shared password checked on the server,
which issues an expiring bearer token kept in the admin_session collection.
"""

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta
from typing import Optional, Tuple

import structlog
from bson.errors import InvalidId
from pymongo.database import Database

from config import Settings
from database import ADMIN_SESSIONS, USERS, create_document, parse_object_id, utcnow
from schemas import AdminSession, User

logger = structlog.get_logger()


class AdminLoginDisabled(Exception):
    """No admin password is configured."""


class InvalidPassword(Exception):
    pass


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_anonymous_user(database: Database) -> str:
    user_id = create_document(database, USERS, User(is_anonymous=True, created_at=utcnow()))
    logger.info("anonymous_user_created", user_id=user_id)
    return user_id


def user_exists(database: Database, user_id: str) -> bool:
    try:
        oid = parse_object_id(user_id)
    except (InvalidId, TypeError):
        return False
    return database[USERS].count_documents({"_id": oid}, limit=1) > 0


def admin_login(database: Database, password: str, settings: Settings) -> Tuple[str, datetime]:
    if not settings.admin_password:
        raise AdminLoginDisabled()
    if not hmac.compare_digest(password.encode("utf-8"), settings.admin_password.encode("utf-8")):
        logger.warning("admin_login_failed")
        raise InvalidPassword()

    token = secrets.token_urlsafe(32)
    now = utcnow()
    expires_at = now + timedelta(minutes=settings.admin_session_ttl_minutes)
    session = AdminSession(token=_hash_token(token), created_at=now, expires_at=expires_at)
    database[ADMIN_SESSIONS].insert_one(session.model_dump())
    logger.info("admin_login_succeeded", expires_at=expires_at.isoformat())
    return token, expires_at


def verify_admin_token(database: Database, token: Optional[str]) -> bool:
    if not token:
        return False
    session = database[ADMIN_SESSIONS].find_one({"token": _hash_token(token)})
    if session is None:
        return False
    if session["expires_at"] <= utcnow():
        database[ADMIN_SESSIONS].delete_one({"_id": session["_id"]})
        return False
    return True


def admin_logout(database: Database, token: str) -> None:
    database[ADMIN_SESSIONS].delete_one({"token": _hash_token(token)})
