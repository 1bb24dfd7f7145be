import sqlite3
from typing import Optional


# ── Accounts ──

def find_user_for_login(conn: sqlite3.Connection, username: str) -> Optional[sqlite3.Row]:
    return conn.execute(
        "SELECT username,password_hash,is_admin FROM users WHERE username=?",
        (username,),
    ).fetchone()


def account_exists(conn: sqlite3.Connection, username: str) -> bool:
    row = conn.execute("SELECT 1 FROM users WHERE username=?", (username,)).fetchone()
    return bool(row)


def create_account(
    conn: sqlite3.Connection,
    username: str,
    password_hash: str,
    created_at: float,
    is_admin: bool = False,
) -> None:
    conn.execute(
        "INSERT INTO users (username,password_hash,is_admin,created_at) VALUES (?,?,?,?)",
        (username, password_hash, int(is_admin), created_at),
    )


def reset_admin_password(conn: sqlite3.Connection, username: str, password_hash: str) -> None:
    conn.execute(
        "UPDATE users SET password_hash=?, is_admin=1 WHERE username=?",
        (password_hash, username),
    )


# ── Sessions ──

def insert_session(conn: sqlite3.Connection, token: str, username: str, created_at: float) -> None:
    conn.execute(
        "INSERT INTO sessions (token,username,created_at) VALUES (?,?,?)",
        (token, username, created_at),
    )


def find_session_user(conn: sqlite3.Connection, token: str, not_before: float) -> Optional[sqlite3.Row]:
    """User row for a session token created at or after `not_before`."""
    return conn.execute(
        """
        SELECT u.username,u.is_admin,u.created_at
        FROM sessions s
        JOIN users u ON u.username=s.username
        WHERE s.token=? AND s.created_at>=?
        """,
        (token, not_before),
    ).fetchone()


def delete_sessions(conn: sqlite3.Connection, username: str) -> None:
    conn.execute("DELETE FROM sessions WHERE username=?", (username,))


def delete_session_token(conn: sqlite3.Connection, token: str) -> None:
    conn.execute("DELETE FROM sessions WHERE token=?", (token,))


def purge_expired_sessions(conn: sqlite3.Connection, not_before: float) -> int:
    cur = conn.execute("DELETE FROM sessions WHERE created_at<?", (not_before,))
    return int(cur.rowcount)
