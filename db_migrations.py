import sqlite3
import time
from dataclasses import dataclass
from typing import Callable, List


@dataclass(frozen=True)
class Migration:
    migration_id: str
    description: str
    apply: Callable[[sqlite3.Connection], None]


def _table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table});").fetchall()
    return {str(r["name"]) for r in rows}


def _safe_add_column(conn: sqlite3.Connection, table: str, name: str, coltype: str) -> None:
    if name in _table_columns(conn, table):
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {coltype};")


def _migration_0001_initial(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS users (
          username TEXT PRIMARY KEY,
          password_hash TEXT NOT NULL,
          is_admin INTEGER NOT NULL DEFAULT 0,
          created_at REAL NOT NULL
        );

        CREATE TABLE IF NOT EXISTS sessions (
          token TEXT PRIMARY KEY,
          username TEXT NOT NULL REFERENCES users(username) ON DELETE CASCADE,
          created_at REAL NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_sessions_username ON sessions(username);
        """
    )


def _migration_0002_catalog_entities(conn: sqlite3.Connection) -> None:
    """Catalog tables keyed by (origin, origin_key); starships also hold user-owned rows."""
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS planets (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          origin TEXT NOT NULL CHECK (origin IN ('external','local')),
          origin_key TEXT NOT NULL,
          name TEXT NOT NULL,
          rotation_period INTEGER,
          orbital_period INTEGER,
          diameter INTEGER,
          climate TEXT,
          gravity TEXT,
          terrain TEXT,
          surface_water INTEGER,
          population INTEGER,
          UNIQUE (origin, origin_key)
        );

        CREATE TABLE IF NOT EXISTS species (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          origin TEXT NOT NULL CHECK (origin IN ('external','local')),
          origin_key TEXT NOT NULL,
          name TEXT NOT NULL,
          classification TEXT,
          designation TEXT,
          average_height TEXT,
          skin_colors TEXT,
          hair_colors TEXT,
          eye_colors TEXT,
          average_lifespan TEXT,
          language TEXT,
          homeworld_id INTEGER REFERENCES planets(id) ON DELETE SET NULL,
          UNIQUE (origin, origin_key)
        );

        CREATE TABLE IF NOT EXISTS people (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          origin TEXT NOT NULL CHECK (origin IN ('external','local')),
          origin_key TEXT NOT NULL,
          name TEXT NOT NULL,
          height INTEGER,
          mass INTEGER,
          hair_color TEXT,
          skin_color TEXT,
          eye_color TEXT,
          birth_year TEXT,
          gender TEXT,
          homeworld_id INTEGER REFERENCES planets(id) ON DELETE SET NULL,
          UNIQUE (origin, origin_key)
        );
        CREATE INDEX IF NOT EXISTS idx_people_homeworld ON people(homeworld_id);

        CREATE TABLE IF NOT EXISTS films (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          origin TEXT NOT NULL CHECK (origin IN ('external','local')),
          origin_key TEXT NOT NULL,
          title TEXT NOT NULL,
          episode_id INTEGER,
          opening_crawl TEXT,
          director TEXT,
          producer TEXT,
          release_date TEXT,
          UNIQUE (origin, origin_key)
        );

        CREATE TABLE IF NOT EXISTS vehicles (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          origin TEXT NOT NULL CHECK (origin IN ('external','local')),
          origin_key TEXT NOT NULL,
          name TEXT NOT NULL,
          model TEXT,
          manufacturer TEXT,
          cost_in_credits TEXT,
          length TEXT,
          max_atmosphering_speed TEXT,
          crew TEXT,
          passengers TEXT,
          cargo_capacity TEXT,
          consumables TEXT,
          vehicle_class TEXT,
          UNIQUE (origin, origin_key)
        );

        CREATE TABLE IF NOT EXISTS starships (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          is_catalog INTEGER NOT NULL DEFAULT 1,
          is_active INTEGER NOT NULL DEFAULT 1,
          origin TEXT CHECK (origin IS NULL OR origin IN ('external','local')),
          origin_key TEXT,
          owner_id TEXT REFERENCES users(username) ON DELETE CASCADE,
          fork_origin_id INTEGER REFERENCES starships(id),
          name TEXT NOT NULL,
          model TEXT,
          manufacturer TEXT,
          starship_class TEXT,
          cost_in_credits REAL,
          length REAL,
          crew INTEGER,
          passengers INTEGER,
          cargo_capacity INTEGER,
          hyperdrive_rating REAL,
          mglt INTEGER,
          max_atmosphering_speed TEXT,
          consumables TEXT,
          custom_pilot_id INTEGER REFERENCES people(id) ON DELETE SET NULL,
          UNIQUE (origin, origin_key),
          CHECK (
            (is_catalog = 1 AND origin IS NOT NULL AND origin_key IS NOT NULL
               AND owner_id IS NULL AND fork_origin_id IS NULL)
            OR
            (is_catalog = 0 AND origin IS NULL AND origin_key IS NULL AND owner_id IS NOT NULL)
          )
        );
        CREATE INDEX IF NOT EXISTS idx_starships_catalog
          ON starships(is_catalog, is_active, name);
        CREATE INDEX IF NOT EXISTS idx_starships_owner
          ON starships(owner_id, is_active);
        CREATE UNIQUE INDEX IF NOT EXISTS idx_starships_active_fork
          ON starships(owner_id, fork_origin_id)
          WHERE is_active = 1 AND fork_origin_id IS NOT NULL;
        """
    )


def _migration_0003_relationship_edges(conn: sqlite3.Connection) -> None:
    """Many-to-many association tables; `source` records which sync stage wrote the edge."""
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS film_characters (
          film_id INTEGER NOT NULL REFERENCES films(id) ON DELETE CASCADE,
          person_id INTEGER NOT NULL REFERENCES people(id) ON DELETE CASCADE,
          source TEXT NOT NULL DEFAULT 'external',
          PRIMARY KEY (film_id, person_id)
        );
        CREATE INDEX IF NOT EXISTS idx_film_characters_person ON film_characters(person_id);

        CREATE TABLE IF NOT EXISTS film_planets (
          film_id INTEGER NOT NULL REFERENCES films(id) ON DELETE CASCADE,
          planet_id INTEGER NOT NULL REFERENCES planets(id) ON DELETE CASCADE,
          source TEXT NOT NULL DEFAULT 'external',
          PRIMARY KEY (film_id, planet_id)
        );
        CREATE INDEX IF NOT EXISTS idx_film_planets_planet ON film_planets(planet_id);

        CREATE TABLE IF NOT EXISTS film_starships (
          film_id INTEGER NOT NULL REFERENCES films(id) ON DELETE CASCADE,
          starship_id INTEGER NOT NULL REFERENCES starships(id) ON DELETE CASCADE,
          source TEXT NOT NULL DEFAULT 'external',
          PRIMARY KEY (film_id, starship_id)
        );
        CREATE INDEX IF NOT EXISTS idx_film_starships_starship ON film_starships(starship_id);

        CREATE TABLE IF NOT EXISTS film_vehicles (
          film_id INTEGER NOT NULL REFERENCES films(id) ON DELETE CASCADE,
          vehicle_id INTEGER NOT NULL REFERENCES vehicles(id) ON DELETE CASCADE,
          source TEXT NOT NULL DEFAULT 'external',
          PRIMARY KEY (film_id, vehicle_id)
        );
        CREATE INDEX IF NOT EXISTS idx_film_vehicles_vehicle ON film_vehicles(vehicle_id);

        CREATE TABLE IF NOT EXISTS film_species (
          film_id INTEGER NOT NULL REFERENCES films(id) ON DELETE CASCADE,
          species_id INTEGER NOT NULL REFERENCES species(id) ON DELETE CASCADE,
          source TEXT NOT NULL DEFAULT 'external',
          PRIMARY KEY (film_id, species_id)
        );
        CREATE INDEX IF NOT EXISTS idx_film_species_species ON film_species(species_id);

        CREATE TABLE IF NOT EXISTS planet_residents (
          planet_id INTEGER NOT NULL REFERENCES planets(id) ON DELETE CASCADE,
          person_id INTEGER NOT NULL REFERENCES people(id) ON DELETE CASCADE,
          source TEXT NOT NULL DEFAULT 'external',
          PRIMARY KEY (planet_id, person_id)
        );
        CREATE INDEX IF NOT EXISTS idx_planet_residents_person ON planet_residents(person_id);

        CREATE TABLE IF NOT EXISTS species_people (
          species_id INTEGER NOT NULL REFERENCES species(id) ON DELETE CASCADE,
          person_id INTEGER NOT NULL REFERENCES people(id) ON DELETE CASCADE,
          source TEXT NOT NULL DEFAULT 'external',
          PRIMARY KEY (species_id, person_id)
        );
        CREATE INDEX IF NOT EXISTS idx_species_people_person ON species_people(person_id);

        CREATE TABLE IF NOT EXISTS starship_pilots (
          starship_id INTEGER NOT NULL REFERENCES starships(id) ON DELETE CASCADE,
          person_id INTEGER NOT NULL REFERENCES people(id) ON DELETE CASCADE,
          source TEXT NOT NULL DEFAULT 'external',
          PRIMARY KEY (starship_id, person_id)
        );
        CREATE INDEX IF NOT EXISTS idx_starship_pilots_person ON starship_pilots(person_id);

        CREATE TABLE IF NOT EXISTS vehicle_pilots (
          vehicle_id INTEGER NOT NULL REFERENCES vehicles(id) ON DELETE CASCADE,
          person_id INTEGER NOT NULL REFERENCES people(id) ON DELETE CASCADE,
          source TEXT NOT NULL DEFAULT 'external',
          PRIMARY KEY (vehicle_id, person_id)
        );
        CREATE INDEX IF NOT EXISTS idx_vehicle_pilots_person ON vehicle_pilots(person_id);
        """
    )


def _migration_0004_fleets(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS fleets (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          user_id TEXT NOT NULL UNIQUE REFERENCES users(username) ON DELETE CASCADE,
          created_at REAL NOT NULL
        );

        CREATE TABLE IF NOT EXISTS fleet_items (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          fleet_id INTEGER NOT NULL REFERENCES fleets(id) ON DELETE CASCADE,
          starship_id INTEGER NOT NULL REFERENCES starships(id) ON DELETE CASCADE,
          quantity INTEGER NOT NULL DEFAULT 1 CHECK (quantity >= 1),
          nickname TEXT,
          added_at REAL NOT NULL,
          UNIQUE (fleet_id, starship_id)
        );
        CREATE INDEX IF NOT EXISTS idx_fleet_items_starship ON fleet_items(starship_id);
        """
    )


def _migration_0005_starship_timestamps(conn: sqlite3.Connection) -> None:
    """Track creation/edit time on starships (used for custom ship listings)."""
    _safe_add_column(conn, "starships", "created_at", "REAL")
    _safe_add_column(conn, "starships", "updated_at", "REAL")


def _migration_0006_sync_runs(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS sync_runs (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          started_at REAL NOT NULL,
          finished_at REAL,
          status TEXT NOT NULL DEFAULT 'running',
          environment TEXT NOT NULL,
          triggered_by TEXT,
          result_json TEXT NOT NULL DEFAULT '{}',
          error TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_sync_runs_started ON sync_runs(started_at);
        """
    )


def _migrations() -> List[Migration]:
    return [
        Migration("0001_initial", "Create auth tables", _migration_0001_initial),
        Migration("0002_catalog_entities", "Create catalog entity tables with origin identity", _migration_0002_catalog_entities),
        Migration("0003_relationship_edges", "Create many-to-many association tables", _migration_0003_relationship_edges),
        Migration("0004_fleets", "Add per-user fleets and fleet items", _migration_0004_fleets),
        Migration("0005_starship_timestamps", "Add created/updated timestamps to starships", _migration_0005_starship_timestamps),
        Migration("0006_sync_runs", "Add catalog sync run log", _migration_0006_sync_runs),
    ]


def apply_migrations(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
          migration_id TEXT PRIMARY KEY,
          description TEXT NOT NULL,
          applied_at REAL NOT NULL
        );
        """
    )

    applied = {
        str(r["migration_id"])
        for r in conn.execute("SELECT migration_id FROM schema_migrations").fetchall()
    }

    for migration in _migrations():
        if migration.migration_id in applied:
            continue
        migration.apply(conn)
        conn.execute(
            "INSERT INTO schema_migrations (migration_id,description,applied_at) VALUES (?,?,?)",
            (migration.migration_id, migration.description, time.time()),
        )
    conn.commit()
