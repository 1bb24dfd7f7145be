"""
Record schemas for the external reference feed and the local dataset.

Feed records carry their stable identifier in `url`; local records carry an
explicit `id` and may reference other records by feed URL, local id or name.
Measurement fields stay as text here and are normalized when persisted.
"""

from typing import Annotated, Any, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _as_ref_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (str, int)):
        value = [value]
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


Text = Annotated[Optional[str], BeforeValidator(_as_text)]
RefList = Annotated[List[str], BeforeValidator(_as_ref_list)]


class FeedRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    url: str = ""

    @property
    def origin_key(self) -> str:
        return self.url.strip()

    @property
    def display_name(self) -> str:
        return str(getattr(self, "name", None) or "").strip()


class PlanetRecord(FeedRecord):
    name: Text = None
    rotation_period: Text = None
    orbital_period: Text = None
    diameter: Text = None
    climate: Text = None
    gravity: Text = None
    terrain: Text = None
    surface_water: Text = None
    population: Text = None
    residents: RefList = Field(default_factory=list)
    films: RefList = Field(default_factory=list)


class SpeciesRecord(FeedRecord):
    name: Text = None
    classification: Text = None
    designation: Text = None
    average_height: Text = None
    skin_colors: Text = None
    hair_colors: Text = None
    eye_colors: Text = None
    average_lifespan: Text = None
    language: Text = None
    homeworld: Text = None
    people: RefList = Field(default_factory=list)
    films: RefList = Field(default_factory=list)


class PersonRecord(FeedRecord):
    name: Text = None
    height: Text = None
    mass: Text = None
    hair_color: Text = None
    skin_color: Text = None
    eye_color: Text = None
    birth_year: Text = None
    gender: Text = None
    homeworld: Text = None
    films: RefList = Field(default_factory=list)
    species: RefList = Field(default_factory=list)
    starships: RefList = Field(default_factory=list)
    vehicles: RefList = Field(default_factory=list)


class FilmRecord(FeedRecord):
    title: Text = None
    episode_id: Text = None
    opening_crawl: Text = None
    director: Text = None
    producer: Text = None
    release_date: Text = None
    characters: RefList = Field(default_factory=list)
    planets: RefList = Field(default_factory=list)
    starships: RefList = Field(default_factory=list)
    vehicles: RefList = Field(default_factory=list)
    species: RefList = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        return str(self.title or "").strip()


class StarshipRecord(FeedRecord):
    name: Text = None
    model: Text = None
    manufacturer: Text = None
    starship_class: Text = None
    cost_in_credits: Text = None
    length: Text = None
    crew: Text = None
    passengers: Text = None
    cargo_capacity: Text = None
    consumables: Text = None
    hyperdrive_rating: Text = None
    mglt: Text = Field(default=None, alias="MGLT")
    max_atmosphering_speed: Text = None
    pilots: RefList = Field(default_factory=list)
    films: RefList = Field(default_factory=list)


class VehicleRecord(FeedRecord):
    name: Text = None
    model: Text = None
    manufacturer: Text = None
    cost_in_credits: Text = None
    length: Text = None
    max_atmosphering_speed: Text = None
    crew: Text = None
    passengers: Text = None
    cargo_capacity: Text = None
    consumables: Text = None
    vehicle_class: Text = None
    pilots: RefList = Field(default_factory=list)
    films: RefList = Field(default_factory=list)


class LocalRecordMixin(BaseModel):
    id: Annotated[str, BeforeValidator(lambda v: "" if v is None else str(v))] = ""

    @property
    def origin_key(self) -> str:
        return self.id.strip()


class LocalPlanetRecord(LocalRecordMixin, PlanetRecord):
    pass


class LocalSpeciesRecord(LocalRecordMixin, SpeciesRecord):
    pass


class LocalPersonRecord(LocalRecordMixin, PersonRecord):
    pass


class LocalFilmRecord(LocalRecordMixin, FilmRecord):
    pass


class LocalStarshipRecord(LocalRecordMixin, StarshipRecord):
    pass


class LocalVehicleRecord(LocalRecordMixin, VehicleRecord):
    pass
