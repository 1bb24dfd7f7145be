"""
Database migration tests — verify that migrations apply cleanly and
produce the schema-level invariants the catalog relies on.

Catches:
  - SQL syntax errors in migration functions
  - Idempotency failures (running migrations twice)
  - Missing tables or columns after migration
  - Constraints that stop enforcing identity / ownership / quantity rules
"""

import sqlite3
import time

import pytest


# ── Migration application ─────────────────────────────────────────────────

class TestMigrationsApply:
    def test_all_migrations_apply_to_fresh_db(self):
        """All migrations should apply without error to an empty database."""
        from db import configure_connection
        from db_migrations import apply_migrations

        conn = configure_connection(sqlite3.connect(":memory:"))
        apply_migrations(conn)

        rows = conn.execute("SELECT migration_id FROM schema_migrations ORDER BY migration_id").fetchall()
        ids = [r["migration_id"] for r in rows]
        assert ids[0] == "0001_initial"
        assert "0006_sync_runs" in ids
        conn.close()

    def test_migrations_are_idempotent(self):
        """Running apply_migrations twice should not raise or re-record."""
        from db import configure_connection
        from db_migrations import _migrations, apply_migrations

        conn = configure_connection(sqlite3.connect(":memory:"))
        apply_migrations(conn)
        apply_migrations(conn)
        n = conn.execute("SELECT COUNT(*) FROM schema_migrations").fetchone()[0]
        assert n == len(_migrations())
        conn.close()

    def test_migration_ids_are_sequential(self):
        from db_migrations import _migrations

        ids = [m.migration_id for m in _migrations()]
        assert ids == sorted(ids), f"Migration IDs are not sorted: {ids}"

    def test_no_duplicate_migration_ids(self):
        from db_migrations import _migrations

        ids = [m.migration_id for m in _migrations()]
        assert len(ids) == len(set(ids)), f"Duplicate migration IDs: {[x for x in ids if ids.count(x) > 1]}"


# ── Schema expectations ───────────────────────────────────────────────────

EXPECTED_TABLES = [
    "users",
    "sessions",
    "planets",
    "species",
    "people",
    "films",
    "starships",
    "vehicles",
    "film_characters",
    "film_planets",
    "film_starships",
    "film_vehicles",
    "film_species",
    "planet_residents",
    "species_people",
    "starship_pilots",
    "vehicle_pilots",
    "fleets",
    "fleet_items",
    "sync_runs",
    "schema_migrations",
]


class TestSchemaAfterMigrations:
    def test_expected_tables_exist(self, db_conn: sqlite3.Connection):
        tables = {
            r[0]
            for r in db_conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
        }
        for t in EXPECTED_TABLES:
            assert t in tables, f"Expected table '{t}' not found. Tables: {tables}"

    def test_starships_table_has_lineage_columns(self, db_conn: sqlite3.Connection):
        cols = {r["name"] for r in db_conn.execute("PRAGMA table_info(starships)").fetchall()}
        for c in ("is_catalog", "is_active", "origin", "origin_key", "owner_id", "fork_origin_id",
                  "custom_pilot_id", "created_at", "updated_at"):
            assert c in cols, f"starships table missing column: {c}"

    def test_edge_tables_record_source(self, db_conn: sqlite3.Connection):
        from catalog_service import edge_tables

        for table, _, _ in edge_tables():
            cols = {r["name"] for r in db_conn.execute(f"PRAGMA table_info({table})").fetchall()}
            assert "source" in cols, f"{table} missing source column"

    def test_foreign_keys_enabled(self, db_conn: sqlite3.Connection):
        fk = db_conn.execute("PRAGMA foreign_keys;").fetchone()
        assert fk[0] == 1


# ── Constraints ───────────────────────────────────────────────────────────

def _user(conn: sqlite3.Connection, username: str = "alice") -> str:
    conn.execute(
        "INSERT INTO users (username,password_hash,is_admin,created_at) VALUES (?,?,0,?)",
        (username, "x", time.time()),
    )
    return username


class TestSchemaConstraints:
    def test_origin_identity_is_unique(self, db_conn: sqlite3.Connection):
        db_conn.execute("INSERT INTO planets (origin,origin_key,name) VALUES ('external','k1','A')")
        with pytest.raises(sqlite3.IntegrityError):
            db_conn.execute("INSERT INTO planets (origin,origin_key,name) VALUES ('external','k1','B')")

    def test_same_key_allowed_under_different_origin(self, db_conn: sqlite3.Connection):
        db_conn.execute("INSERT INTO planets (origin,origin_key,name) VALUES ('external','k1','A')")
        db_conn.execute("INSERT INTO planets (origin,origin_key,name) VALUES ('local','k1','B')")

    def test_unknown_origin_rejected(self, db_conn: sqlite3.Connection):
        with pytest.raises(sqlite3.IntegrityError):
            db_conn.execute("INSERT INTO films (origin,origin_key,title) VALUES ('imported','k','T')")

    def test_catalog_starship_cannot_have_owner(self, db_conn: sqlite3.Connection):
        owner = _user(db_conn)
        with pytest.raises(sqlite3.IntegrityError):
            db_conn.execute(
                "INSERT INTO starships (is_catalog,origin,origin_key,owner_id,name) VALUES (1,'external','k',?,'S')",
                (owner,),
            )

    def test_custom_starship_requires_owner(self, db_conn: sqlite3.Connection):
        with pytest.raises(sqlite3.IntegrityError):
            db_conn.execute("INSERT INTO starships (is_catalog,name) VALUES (0,'Mine')")

    def test_only_one_active_fork_per_user_and_source(self, db_conn: sqlite3.Connection):
        owner = _user(db_conn)
        cur = db_conn.execute(
            "INSERT INTO starships (is_catalog,origin,origin_key,name) VALUES (1,'external','k','S')"
        )
        source_id = cur.lastrowid
        db_conn.execute(
            "INSERT INTO starships (is_catalog,owner_id,fork_origin_id,name) VALUES (0,?,?,'F1')",
            (owner, source_id),
        )
        with pytest.raises(sqlite3.IntegrityError):
            db_conn.execute(
                "INSERT INTO starships (is_catalog,owner_id,fork_origin_id,name) VALUES (0,?,?,'F2')",
                (owner, source_id),
            )

    def test_inactive_fork_does_not_block_new_fork(self, db_conn: sqlite3.Connection):
        owner = _user(db_conn)
        cur = db_conn.execute(
            "INSERT INTO starships (is_catalog,origin,origin_key,name) VALUES (1,'external','k','S')"
        )
        source_id = cur.lastrowid
        db_conn.execute(
            "INSERT INTO starships (is_catalog,is_active,owner_id,fork_origin_id,name) VALUES (0,0,?,?,'Old')",
            (owner, source_id),
        )
        db_conn.execute(
            "INSERT INTO starships (is_catalog,owner_id,fork_origin_id,name) VALUES (0,?,?,'New')",
            (owner, source_id),
        )

    def test_fleet_item_quantity_must_be_positive(self, db_conn: sqlite3.Connection):
        owner = _user(db_conn)
        fleet_id = db_conn.execute(
            "INSERT INTO fleets (user_id,created_at) VALUES (?,?)", (owner, time.time())
        ).lastrowid
        ship_id = db_conn.execute(
            "INSERT INTO starships (is_catalog,origin,origin_key,name) VALUES (1,'external','k','S')"
        ).lastrowid
        with pytest.raises(sqlite3.IntegrityError):
            db_conn.execute(
                "INSERT INTO fleet_items (fleet_id,starship_id,quantity,added_at) VALUES (?,?,0,?)",
                (fleet_id, ship_id, time.time()),
            )

    def test_one_fleet_per_user(self, db_conn: sqlite3.Connection):
        owner = _user(db_conn)
        db_conn.execute("INSERT INTO fleets (user_id,created_at) VALUES (?,?)", (owner, time.time()))
        with pytest.raises(sqlite3.IntegrityError):
            db_conn.execute("INSERT INTO fleets (user_id,created_at) VALUES (?,?)", (owner, time.time()))
