"""
Shared pytest fixtures for the starship registry tests.

Provides:
  - In-memory SQLite DB with migrations applied
  - FastAPI TestClient bound to a per-test temporary database
  - Per-user clients carrying a real session cookie
  - An in-memory feed source with a small reference dataset
  - Helper functions for users, catalog rows and local dataset files
"""

import copy
import json
import os
import secrets
import sqlite3
import sys
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

import pytest

# ---------------------------------------------------------------------------
# Ensure the project root is on sys.path so we can import app modules
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Real sessions: ownership rules are part of what is under test.
os.environ["DEV_SKIP_AUTH"] = "0"
os.environ["APP_ENV"] = "development"
os.environ["SYNC_ON_STARTUP"] = "0"
os.environ["SYNC_API_KEY"] = ""
os.environ["FEED_SOURCE"] = "snapshot"

_TEST_DB_DIR = tempfile.mkdtemp(prefix="starship_registry_test_")
os.environ["DB_DIR"] = _TEST_DB_DIR
os.environ["DB_PATH"] = str(Path(_TEST_DB_DIR) / "catalog.db")
os.environ["LOCAL_DATA_DIR"] = tempfile.mkdtemp(prefix="starship_registry_local_")

FEED = "https://swapi.test/api"


def feed_url(kind: str, n: int) -> str:
    return f"{FEED}/{kind}/{n}/"


# ---------------------------------------------------------------------------
# Reference feed
# ---------------------------------------------------------------------------

def sample_feed() -> Dict[str, List[Dict[str, Any]]]:
    """A tiny but fully cross-referenced feed (one film, three starships)."""
    return {
        "planets": [
            {
                "url": feed_url("planets", 1), "name": "Tatooine", "diameter": "10465",
                "rotation_period": "23", "orbital_period": "304", "population": "200000",
                "climate": "arid", "terrain": "desert", "surface_water": "1",
                "residents": [feed_url("people", 1)], "films": [feed_url("films", 1)],
            },
            {
                "url": feed_url("planets", 2), "name": "Alderaan", "diameter": "12500",
                "population": "2000000000", "climate": "temperate",
                "residents": [], "films": [feed_url("films", 1)],
            },
        ],
        "species": [
            {
                "url": feed_url("species", 1), "name": "Human", "classification": "mammal",
                "homeworld": None, "people": [feed_url("people", 1)], "films": [feed_url("films", 1)],
            },
        ],
        "people": [
            {
                "url": feed_url("people", 1), "name": "Luke Skywalker", "height": "172", "mass": "77",
                "birth_year": "19BBY", "gender": "male", "homeworld": feed_url("planets", 1),
                "films": [feed_url("films", 1)], "starships": [feed_url("starships", 12)],
            },
            {
                "url": feed_url("people", 14), "name": "Han Solo", "height": "180", "mass": "80",
                "birth_year": "29BBY", "gender": "male", "homeworld": "unknown",
                "films": [feed_url("films", 1)], "starships": [feed_url("starships", 10)],
            },
        ],
        "films": [
            {
                "url": feed_url("films", 1), "title": "A New Hope", "episode_id": 4,
                "director": "George Lucas", "release_date": "1977-05-25",
                "characters": [feed_url("people", 1), feed_url("people", 14)],
                "planets": [feed_url("planets", 1), feed_url("planets", 2)],
                "starships": [feed_url("starships", 10), feed_url("starships", 9)],
                "vehicles": [feed_url("vehicles", 4)],
                "species": [feed_url("species", 1)],
            },
        ],
        "starships": [
            {
                "url": feed_url("starships", 10), "name": "Millennium Falcon", "model": "YT-1300 light freighter",
                "manufacturer": "Corellian Engineering Corporation", "starship_class": "Light freighter",
                "cost_in_credits": "100000", "length": "34.37", "crew": "4", "passengers": "6",
                "cargo_capacity": "100000", "hyperdrive_rating": "0.5", "MGLT": "75",
                "max_atmosphering_speed": "1050", "consumables": "2 months",
                "pilots": [feed_url("people", 14)], "films": [feed_url("films", 1)],
            },
            {
                "url": feed_url("starships", 9), "name": "Death Star", "model": "DS-1 Orbital Battle Station",
                "manufacturer": "Imperial Department of Military Research, Sienar Fleet Systems",
                "starship_class": "Deep Space Mobile Battlestation",
                "cost_in_credits": "1000000000000", "length": "120000", "crew": "342,953",
                "passengers": "843,342", "cargo_capacity": "1000000000000", "hyperdrive_rating": "4.0",
                "MGLT": "10", "max_atmosphering_speed": "n/a", "consumables": "3 years",
                "pilots": [], "films": [feed_url("films", 1)],
            },
            {
                "url": feed_url("starships", 12), "name": "X-wing", "model": "T-65 X-wing",
                "manufacturer": "Incom Corporation", "starship_class": "Starfighter",
                "cost_in_credits": "149999", "length": "12.5", "crew": "1", "passengers": "0",
                "cargo_capacity": "110", "hyperdrive_rating": "1.0", "MGLT": "100",
                "max_atmosphering_speed": "1050", "consumables": "1 week",
                "pilots": [feed_url("people", 1)], "films": [feed_url("films", 1)],
            },
        ],
        "vehicles": [
            {
                "url": feed_url("vehicles", 4), "name": "Sand Crawler", "model": "Digger Crawler",
                "manufacturer": "Corellia Mining Corporation", "vehicle_class": "wheeled",
                "cost_in_credits": "150000", "crew": "46", "pilots": [], "films": [feed_url("films", 1)],
            },
        ],
    }


class StaticFeedSource:
    """Feed source serving fixed records; mutate `records` between runs to simulate upstream changes."""

    def __init__(self, records: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.records = records if records is not None else sample_feed()
        self.calls: List[str] = []

    def describe(self) -> str:
        return "static"

    def fetch_all(self, kind: str) -> List[Dict[str, Any]]:
        self.calls.append(kind)
        return copy.deepcopy(self.records.get(kind, []))

    def drop(self, kind: str, url: str) -> None:
        self.records[kind] = [r for r in self.records[kind] if r.get("url") != url]


@pytest.fixture()
def feed() -> StaticFeedSource:
    return StaticFeedSource()


@pytest.fixture()
def empty_local_dir(tmp_path: Path) -> Path:
    path = tmp_path / "local_empty"
    path.mkdir()
    return path


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def db_conn() -> Generator[sqlite3.Connection, None, None]:
    """Yield an in-memory SQLite connection with all migrations applied."""
    from db import configure_connection
    from db_migrations import apply_migrations

    conn = configure_connection(sqlite3.connect(":memory:"))
    apply_migrations(conn)

    yield conn
    conn.close()


# ---------------------------------------------------------------------------
# FastAPI TestClient
# ---------------------------------------------------------------------------

@pytest.fixture()
def app_db(tmp_path: Path, monkeypatch) -> Path:
    """Point the app at a fresh database file for this test."""
    import db

    path = tmp_path / "catalog.db"
    monkeypatch.setattr(db, "DB_PATH", path)
    return path


@pytest.fixture()
def client(app_db):
    """Anonymous TestClient; entering it runs startup (migrations + default admin)."""
    from fastapi.testclient import TestClient
    from main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture()
def app_conn(client) -> Generator[sqlite3.Connection, None, None]:
    """Direct connection to the same database the app is using."""
    from db import connect_db

    conn = connect_db()
    yield conn
    conn.close()


@pytest.fixture()
def login_as(client, app_conn):
    """Factory: `login_as("alice")` returns a TestClient with alice's session cookie."""
    from fastapi.testclient import TestClient
    from auth_service import SESSION_COOKIE_NAME
    from main import app

    def _login(username: str, is_admin: bool = False) -> TestClient:
        token = TestHelpers.create_test_user(app_conn, username, is_admin=is_admin)
        return TestClient(app, cookies={SESSION_COOKIE_NAME: token})

    return _login


# ---------------------------------------------------------------------------
# Test data helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    """Stateless helper methods for common test-data operations."""

    @staticmethod
    def create_test_user(conn: sqlite3.Connection, username: str = "testuser", is_admin: bool = False) -> str:
        """Insert a user row and return a session token."""
        from auth_service import hash_password

        pw_hash = hash_password(username, "password123")
        conn.execute(
            "INSERT OR IGNORE INTO users (username, password_hash, is_admin, created_at) VALUES (?,?,?,?)",
            (username, pw_hash, int(is_admin), time.time()),
        )
        token = secrets.token_urlsafe(32)
        conn.execute(
            "INSERT INTO sessions (token, username, created_at) VALUES (?,?,?)",
            (token, username, time.time()),
        )
        conn.commit()
        return token

    @staticmethod
    def create_catalog_starship(
        conn: sqlite3.Connection,
        *,
        name: str = "Test Cruiser",
        origin_key: Optional[str] = None,
        is_active: bool = True,
        **fields: Any,
    ) -> int:
        """Insert an external catalog starship row. Returns its id."""
        now = time.time()
        base: Dict[str, Any] = {
            "is_catalog": 1,
            "is_active": int(is_active),
            "origin": "external",
            "origin_key": origin_key or f"{FEED}/starships/{secrets.token_hex(4)}/",
            "name": name,
            "created_at": now,
            "updated_at": now,
        }
        base.update(fields)
        col_names = ", ".join(base.keys())
        placeholders = ", ".join("?" for _ in base)
        cur = conn.execute(f"INSERT INTO starships ({col_names}) VALUES ({placeholders})", tuple(base.values()))
        conn.commit()
        return int(cur.lastrowid)

    @staticmethod
    def create_person(conn: sqlite3.Connection, name: str = "Wedge Antilles", origin_key: Optional[str] = None) -> int:
        cur = conn.execute(
            "INSERT INTO people (origin, origin_key, name) VALUES ('external', ?, ?)",
            (origin_key or f"{FEED}/people/{secrets.token_hex(4)}/", name),
        )
        conn.commit()
        return int(cur.lastrowid)

    @staticmethod
    def write_local_dataset(directory: Path, data: Dict[str, List[Dict[str, Any]]]) -> Path:
        """Write `<kind>.json` files in the {"data": [...]} container shape."""
        directory.mkdir(parents=True, exist_ok=True)
        for kind, records in data.items():
            (directory / f"{kind}.json").write_text(json.dumps({"data": records}), encoding="utf-8")
        return directory

    @staticmethod
    def table_count(conn: sqlite3.Connection, table: str, where: str = "", params: tuple = ()) -> int:
        sql = f"SELECT COUNT(*) AS n FROM {table}"
        if where:
            sql += f" WHERE {where}"
        return int(conn.execute(sql, params).fetchone()["n"])


@pytest.fixture()
def helpers() -> TestHelpers:
    return TestHelpers()
