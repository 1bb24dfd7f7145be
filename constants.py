"""
Shared constants for the starship catalog service.

Kind names double as feed resource paths and local dataset file stems.
"""

from typing import Dict, List, Tuple

# ---------------------------------------------------------------------------
# Record origins
# ---------------------------------------------------------------------------

ORIGIN_EXTERNAL = "external"
ORIGIN_LOCAL = "local"
ORIGINS: Tuple[str, ...] = (ORIGIN_EXTERNAL, ORIGIN_LOCAL)

# ---------------------------------------------------------------------------
# Entity kinds (sync order: later kinds resolve references to earlier ones)
# ---------------------------------------------------------------------------

KIND_PLANETS = "planets"
KIND_SPECIES = "species"
KIND_PEOPLE = "people"
KIND_FILMS = "films"
KIND_STARSHIPS = "starships"
KIND_VEHICLES = "vehicles"

SYNC_KIND_ORDER: List[str] = [
    KIND_PLANETS,
    KIND_SPECIES,
    KIND_PEOPLE,
    KIND_FILMS,
    KIND_STARSHIPS,
    KIND_VEHICLES,
]

KIND_TABLES: Dict[str, str] = {
    KIND_PLANETS: "planets",
    KIND_SPECIES: "species",
    KIND_PEOPLE: "people",
    KIND_FILMS: "films",
    KIND_STARSHIPS: "starships",
    KIND_VEHICLES: "vehicles",
}

# Films are titled, everything else is named.
KIND_NAME_COLUMNS: Dict[str, str] = {
    KIND_PLANETS: "name",
    KIND_SPECIES: "name",
    KIND_PEOPLE: "name",
    KIND_FILMS: "title",
    KIND_STARSHIPS: "name",
    KIND_VEHICLES: "name",
}

# Text tokens the feed uses for "no value".
ABSENT_TOKENS = frozenset({"", "unknown", "n/a", "none"})

# ---------------------------------------------------------------------------
# Environments
# ---------------------------------------------------------------------------

PRODUCTION_LIKE_ENVS = frozenset({"production", "prod", "staging"})

# ---------------------------------------------------------------------------
# Paging
# ---------------------------------------------------------------------------

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 200

# ---------------------------------------------------------------------------
# Numeric bounds
# ---------------------------------------------------------------------------

# Largest quantity a single fleet item may hold.
MAX_FLEET_QUANTITY = 2**31 - 1

# SQLite INTEGER range; larger values cannot be bound as parameters.
MAX_SQLITE_INTEGER = 2**63 - 1
