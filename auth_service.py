"""
Session-cookie authentication helpers shared by every router.

Users are identified by username; the same string is stored as the owner of
forks, custom starships and fleets.
"""

import hashlib
import hmac
import logging
import os
import re
import secrets
import sqlite3
import time
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request

from auth_repository import (
    account_exists,
    create_account,
    find_session_user,
    insert_session,
    purge_expired_sessions,
    reset_admin_password,
)

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "session_token"
AUTH_PASSWORD_SALT = os.environ.get("AUTH_PASSWORD_SALT", "starship_registry_auth_salt_v1")
DEV_SKIP_AUTH = os.environ.get("DEV_SKIP_AUTH", "").strip().lower() in ("1", "true", "yes")
SESSION_TTL_S = float(os.environ.get("SESSION_TTL_S", str(14 * 24 * 3600)))

DEFAULT_ADMIN_USERNAME = "admin"

# Returned for every request while DEV_SKIP_AUTH is on.
_DEV_ADMIN: Dict[str, Any] = {"username": DEFAULT_ADMIN_USERNAME, "is_admin": 1, "created_at": 0.0}

_USERNAME_RE = re.compile(r"[a-z0-9_]{3,32}")


def hash_password(username: str, password: str) -> str:
    payload = f"{AUTH_PASSWORD_SALT}:{username.strip().lower()}:{password}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def verify_password(username: str, password: str, stored_hash: str) -> bool:
    return hmac.compare_digest(str(stored_hash or ""), hash_password(username, password))


def valid_username(raw: Any) -> bool:
    return bool(_USERNAME_RE.fullmatch(str(raw or "").strip().lower()))


def _session_cutoff() -> float:
    return time.time() - SESSION_TTL_S


def create_session(conn: sqlite3.Connection, username: str) -> str:
    """Issue a new session token. Expired sessions are purged on the way."""
    purged = purge_expired_sessions(conn, _session_cutoff())
    if purged:
        logger.info("Purged %d expired session(s)", purged)
    token = secrets.token_urlsafe(32)
    insert_session(conn, token, username, time.time())
    return token


def get_user_by_session_token(conn: sqlite3.Connection, token: str) -> Optional[sqlite3.Row]:
    return find_session_user(conn, token, _session_cutoff())


def get_current_user(conn: sqlite3.Connection, request: Request) -> Optional[Any]:
    if DEV_SKIP_AUTH:
        return _DEV_ADMIN
    token = (request.cookies.get(SESSION_COOKIE_NAME) or "").strip()
    if not token:
        return None
    return get_user_by_session_token(conn, token)


def require_login(conn: sqlite3.Connection, request: Request) -> Any:
    user = get_current_user(conn, request)
    if not user:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


def require_user_id(conn: sqlite3.Connection, request: Request) -> str:
    """The caller's username; owner ids and fleet user ids are usernames."""
    return str(require_login(conn, request)["username"])


def require_admin(conn: sqlite3.Connection, request: Request) -> Any:
    user = require_login(conn, request)
    if not int(user["is_admin"]):
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def ensure_default_admin_account(conn: sqlite3.Connection, reset_password: bool = False) -> None:
    admin_hash = hash_password(DEFAULT_ADMIN_USERNAME, DEFAULT_ADMIN_USERNAME)
    if not account_exists(conn, DEFAULT_ADMIN_USERNAME):
        create_account(conn, DEFAULT_ADMIN_USERNAME, admin_hash, time.time(), is_admin=True)
        logger.info("Created default admin account")
        return
    if reset_password:
        reset_admin_password(conn, DEFAULT_ADMIN_USERNAME, admin_hash)
