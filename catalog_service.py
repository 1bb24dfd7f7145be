"""
Catalog definitions: per-kind column mappings, relationship edges, measurement
normalization and the local (supplementary) dataset loader.

The sync pipeline is table-driven from KIND_SPECS and RELATIONS so every
entity kind goes through the same upsert/rebuild/augment code.
"""

import json
import logging
import math
import os
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from catalog_models import (
    FeedRecord,
    FilmRecord,
    LocalFilmRecord,
    LocalPersonRecord,
    LocalPlanetRecord,
    LocalSpeciesRecord,
    LocalStarshipRecord,
    LocalVehicleRecord,
    PersonRecord,
    PlanetRecord,
    SpeciesRecord,
    StarshipRecord,
    VehicleRecord,
)
from constants import (
    ABSENT_TOKENS,
    KIND_FILMS,
    KIND_NAME_COLUMNS,
    KIND_PEOPLE,
    KIND_PLANETS,
    KIND_SPECIES,
    KIND_STARSHIPS,
    KIND_TABLES,
    KIND_VEHICLES,
    SYNC_KIND_ORDER,
)
from db import APP_DIR

logger = logging.getLogger(__name__)

LOCAL_DATA_DIR = Path(os.environ.get("LOCAL_DATA_DIR", str(APP_DIR / "data" / "local")))


class CatalogDataError(ValueError):
    pass


# ── Measurement normalization ──────────────────────────────────────────────────

def clean_measurement(raw: Any) -> Optional[str]:
    """Strip group separators and map sentinel tokens ("unknown", "n/a") to None."""
    if raw is None:
        return None
    text = str(raw).replace(",", "").strip()
    if text.lower() in ABSENT_TOKENS:
        return None
    return text


def parse_int(raw: Any) -> Optional[int]:
    text = clean_measurement(raw)
    if text is None:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        value = float(text)
    except ValueError:
        return None
    if not math.isfinite(value) or not value.is_integer():
        return None
    return int(value)


def parse_float(raw: Any) -> Optional[float]:
    text = clean_measurement(raw)
    if text is None:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def parse_date(raw: Any) -> Optional[str]:
    text = clean_measurement(raw)
    if text is None:
        return None
    try:
        return date.fromisoformat(text[:10]).isoformat()
    except ValueError:
        return None


def clean_text(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def required_text(raw: Any) -> str:
    return clean_text(raw) or ""


# ── Kind specifications ────────────────────────────────────────────────────────

Parser = Callable[[Any], Any]
ColumnMap = Tuple[Tuple[str, str, Parser], ...]


@dataclass(frozen=True)
class KindSpec:
    kind: str
    table: str
    name_column: str
    feed_model: Type[FeedRecord]
    local_model: Type[FeedRecord]
    columns: ColumnMap
    homeworld_field: Optional[str] = None

    def values_for(self, record: FeedRecord) -> Dict[str, Any]:
        """Domain column values for a record (full replace; absent fields become NULL)."""
        return {column: parse(getattr(record, field, None)) for column, field, parse in self.columns}


@dataclass(frozen=True)
class RelationSpec:
    """One relationship list on a record kind, mapped to an association table.

    `owned` marks the side that declares the edge in the external feed; only
    owned relations are regenerated by the relationship rebuild.
    """

    kind: str
    field: str
    table: str
    self_column: str
    other_column: str
    other_kind: str
    owned: bool


STARSHIP_COLUMNS: ColumnMap = (
    ("name", "name", required_text),
    ("model", "model", clean_text),
    ("manufacturer", "manufacturer", clean_text),
    ("starship_class", "starship_class", clean_text),
    ("cost_in_credits", "cost_in_credits", parse_float),
    ("length", "length", parse_float),
    ("crew", "crew", parse_int),
    ("passengers", "passengers", parse_int),
    ("cargo_capacity", "cargo_capacity", parse_int),
    ("hyperdrive_rating", "hyperdrive_rating", parse_float),
    ("mglt", "mglt", parse_int),
    ("max_atmosphering_speed", "max_atmosphering_speed", clean_text),
    ("consumables", "consumables", clean_text),
)

# Columns a fork copies from its catalog source.
STARSHIP_DOMAIN_COLUMNS: List[str] = [column for column, _, _ in STARSHIP_COLUMNS]

KIND_SPECS: Dict[str, KindSpec] = {
    KIND_PLANETS: KindSpec(
        kind=KIND_PLANETS,
        table=KIND_TABLES[KIND_PLANETS],
        name_column=KIND_NAME_COLUMNS[KIND_PLANETS],
        feed_model=PlanetRecord,
        local_model=LocalPlanetRecord,
        columns=(
            ("name", "name", required_text),
            ("rotation_period", "rotation_period", parse_int),
            ("orbital_period", "orbital_period", parse_int),
            ("diameter", "diameter", parse_int),
            ("climate", "climate", clean_text),
            ("gravity", "gravity", clean_text),
            ("terrain", "terrain", clean_text),
            ("surface_water", "surface_water", parse_int),
            ("population", "population", parse_int),
        ),
    ),
    KIND_SPECIES: KindSpec(
        kind=KIND_SPECIES,
        table=KIND_TABLES[KIND_SPECIES],
        name_column=KIND_NAME_COLUMNS[KIND_SPECIES],
        feed_model=SpeciesRecord,
        local_model=LocalSpeciesRecord,
        columns=(
            ("name", "name", required_text),
            ("classification", "classification", clean_text),
            ("designation", "designation", clean_text),
            ("average_height", "average_height", clean_text),
            ("skin_colors", "skin_colors", clean_text),
            ("hair_colors", "hair_colors", clean_text),
            ("eye_colors", "eye_colors", clean_text),
            ("average_lifespan", "average_lifespan", clean_text),
            ("language", "language", clean_text),
        ),
        homeworld_field="homeworld",
    ),
    KIND_PEOPLE: KindSpec(
        kind=KIND_PEOPLE,
        table=KIND_TABLES[KIND_PEOPLE],
        name_column=KIND_NAME_COLUMNS[KIND_PEOPLE],
        feed_model=PersonRecord,
        local_model=LocalPersonRecord,
        columns=(
            ("name", "name", required_text),
            ("height", "height", parse_int),
            ("mass", "mass", parse_int),
            ("hair_color", "hair_color", clean_text),
            ("skin_color", "skin_color", clean_text),
            ("eye_color", "eye_color", clean_text),
            ("birth_year", "birth_year", clean_text),
            ("gender", "gender", clean_text),
        ),
        homeworld_field="homeworld",
    ),
    KIND_FILMS: KindSpec(
        kind=KIND_FILMS,
        table=KIND_TABLES[KIND_FILMS],
        name_column=KIND_NAME_COLUMNS[KIND_FILMS],
        feed_model=FilmRecord,
        local_model=LocalFilmRecord,
        columns=(
            ("title", "title", required_text),
            ("episode_id", "episode_id", parse_int),
            ("opening_crawl", "opening_crawl", clean_text),
            ("director", "director", clean_text),
            ("producer", "producer", clean_text),
            ("release_date", "release_date", parse_date),
        ),
    ),
    KIND_STARSHIPS: KindSpec(
        kind=KIND_STARSHIPS,
        table=KIND_TABLES[KIND_STARSHIPS],
        name_column=KIND_NAME_COLUMNS[KIND_STARSHIPS],
        feed_model=StarshipRecord,
        local_model=LocalStarshipRecord,
        columns=STARSHIP_COLUMNS,
    ),
    KIND_VEHICLES: KindSpec(
        kind=KIND_VEHICLES,
        table=KIND_TABLES[KIND_VEHICLES],
        name_column=KIND_NAME_COLUMNS[KIND_VEHICLES],
        feed_model=VehicleRecord,
        local_model=LocalVehicleRecord,
        columns=(
            ("name", "name", required_text),
            ("model", "model", clean_text),
            ("manufacturer", "manufacturer", clean_text),
            ("cost_in_credits", "cost_in_credits", clean_text),
            ("length", "length", clean_text),
            ("max_atmosphering_speed", "max_atmosphering_speed", clean_text),
            ("crew", "crew", clean_text),
            ("passengers", "passengers", clean_text),
            ("cargo_capacity", "cargo_capacity", clean_text),
            ("consumables", "consumables", clean_text),
            ("vehicle_class", "vehicle_class", clean_text),
        ),
    ),
}


RELATIONS: List[RelationSpec] = [
    # Declared by the owning side in the external feed.
    RelationSpec(KIND_FILMS, "characters", "film_characters", "film_id", "person_id", KIND_PEOPLE, True),
    RelationSpec(KIND_FILMS, "planets", "film_planets", "film_id", "planet_id", KIND_PLANETS, True),
    RelationSpec(KIND_FILMS, "starships", "film_starships", "film_id", "starship_id", KIND_STARSHIPS, True),
    RelationSpec(KIND_FILMS, "vehicles", "film_vehicles", "film_id", "vehicle_id", KIND_VEHICLES, True),
    RelationSpec(KIND_FILMS, "species", "film_species", "film_id", "species_id", KIND_SPECIES, True),
    RelationSpec(KIND_PLANETS, "residents", "planet_residents", "planet_id", "person_id", KIND_PEOPLE, True),
    RelationSpec(KIND_SPECIES, "people", "species_people", "species_id", "person_id", KIND_PEOPLE, True),
    RelationSpec(KIND_STARSHIPS, "pilots", "starship_pilots", "starship_id", "person_id", KIND_PEOPLE, True),
    RelationSpec(KIND_VEHICLES, "pilots", "vehicle_pilots", "vehicle_id", "person_id", KIND_PEOPLE, True),
    # Reverse lists; the feed repeats them, local records may use either side.
    RelationSpec(KIND_PEOPLE, "films", "film_characters", "person_id", "film_id", KIND_FILMS, False),
    RelationSpec(KIND_PEOPLE, "species", "species_people", "person_id", "species_id", KIND_SPECIES, False),
    RelationSpec(KIND_PEOPLE, "starships", "starship_pilots", "person_id", "starship_id", KIND_STARSHIPS, False),
    RelationSpec(KIND_PEOPLE, "vehicles", "vehicle_pilots", "person_id", "vehicle_id", KIND_VEHICLES, False),
    RelationSpec(KIND_PLANETS, "films", "film_planets", "planet_id", "film_id", KIND_FILMS, False),
    RelationSpec(KIND_SPECIES, "films", "film_species", "species_id", "film_id", KIND_FILMS, False),
    RelationSpec(KIND_STARSHIPS, "films", "film_starships", "starship_id", "film_id", KIND_FILMS, False),
    RelationSpec(KIND_VEHICLES, "films", "film_vehicles", "vehicle_id", "film_id", KIND_FILMS, False),
]


def relations_for(kind: str, *, owned_only: bool = False) -> List[RelationSpec]:
    return [r for r in RELATIONS if r.kind == kind and (r.owned or not owned_only)]


def edge_tables() -> List[Tuple[str, str, str]]:
    """(table, owner_column, owner_table) for every association table."""
    return [
        (r.table, r.self_column, KIND_TABLES[r.kind])
        for r in RELATIONS
        if r.owned
    ]


# ── Local dataset ──────────────────────────────────────────────────────────────

def local_dataset_path(kind: str, data_dir: Optional[Path] = None) -> Path:
    return Path(data_dir or LOCAL_DATA_DIR) / f"{kind}.json"


def load_local_records(kind: str, data_dir: Optional[Path] = None) -> List[FeedRecord]:
    """Load one kind's supplementary records from `<kind>.json` ({"data": [...]}).

    A missing file means the kind has no supplementary records.
    """
    spec = KIND_SPECS[kind]
    path = local_dataset_path(kind, data_dir)
    if not path.exists():
        logger.debug("No local dataset file for %s at %s", kind, path)
        return []

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise CatalogDataError(f"Invalid JSON in {path}: {exc}") from exc

    if isinstance(raw, dict):
        items = raw.get("data")
    else:
        items = raw
    if not isinstance(items, list):
        raise CatalogDataError(f"{path} must contain a list under 'data'")

    records: List[FeedRecord] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise CatalogDataError(f"{path}[{index}] must be an object")
        record = spec.local_model.model_validate(item)
        if not record.origin_key:
            raise CatalogDataError(f"{path}[{index}] is missing 'id'")
        if not record.display_name:
            raise CatalogDataError(f"{path}[{index}] ({record.origin_key}) has no name")
        records.append(record)
    return records


def load_local_dataset(data_dir: Optional[Path] = None) -> Dict[str, List[FeedRecord]]:
    return {kind: load_local_records(kind, data_dir) for kind in SYNC_KIND_ORDER}
