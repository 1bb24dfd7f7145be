"""
Starship catalog browsing, forking and user-owned (custom) starships.

One `starships` table serves three roles:
  - catalog rows   (is_catalog=1, origin/origin_key set, no owner)
  - forks          (is_catalog=0, owner set, fork_origin_id -> catalog row)
  - custom rows    (is_catalog=0, owner set, no fork origin)

Catalog rows are written only by the sync pipeline. Forks and custom rows are
written only by their owner; another user's row is reported as not found.
"""

import logging
import sqlite3
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from catalog_service import STARSHIP_DOMAIN_COLUMNS
from constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, MAX_SQLITE_INTEGER
from errors import DomainRuleError, NotFoundError

logger = logging.getLogger(__name__)

# Query-string range filter name -> column
RANGE_FILTER_COLUMNS: Dict[str, str] = {
    "cost": "cost_in_credits",
    "length": "length",
    "crew": "crew",
    "passengers": "passengers",
    "cargo": "cargo_capacity",
}

CATALOG_SORT_COLUMNS: Dict[str, str] = {
    "name": "s.name",
    "model": "s.model",
    "manufacturer": "s.manufacturer",
    "class": "s.starship_class",
    "cost": "s.cost_in_credits",
    "length": "s.length",
    "crew": "s.crew",
    "passengers": "s.passengers",
    "cargo": "s.cargo_capacity",
}

CUSTOM_SORT_COLUMNS: Dict[str, str] = dict(CATALOG_SORT_COLUMNS, created="s.created_at", updated="s.updated_at")

NON_NEGATIVE_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("cost_in_credits", "Cost in credits"),
    ("length", "Length"),
    ("crew", "Crew"),
    ("passengers", "Passengers"),
    ("cargo_capacity", "Cargo capacity"),
    ("hyperdrive_rating", "Hyperdrive rating"),
    ("mglt", "MGLT"),
)


# ── Query helpers ──────────────────────────────────────────────────────────────

def clamp_paging(page: Optional[int], page_size: Optional[int], default_size: int = DEFAULT_PAGE_SIZE) -> Tuple[int, int, int]:
    """(page, page_size, offset) with page >= 1 and 1 <= page_size <= MAX_PAGE_SIZE."""
    p = int(page or 1)
    if p < 1:
        p = 1
    size = int(page_size or 0)
    if size < 1:
        size = default_size
    size = min(size, MAX_PAGE_SIZE)
    p = min(p, MAX_SQLITE_INTEGER // size)
    return p, size, (p - 1) * size


def order_by(sort: Optional[str], direction: Optional[str], columns: Dict[str, str], default_key: str, tie_breaker: str) -> str:
    """ORDER BY clause from an allow-listed sort key; unknown keys fall back to the default."""
    key = (sort or default_key).strip().lower()
    column = columns.get(key) or columns[default_key]
    desc = (direction or "").strip().lower() == "desc"
    return f"ORDER BY {column} {'DESC' if desc else 'ASC'}, {tie_breaker} ASC"


def _like(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


@dataclass
class StarshipFilters:
    search: Optional[str] = None
    starship_class: Optional[str] = None
    manufacturer: Optional[str] = None
    min_cost: Optional[float] = None
    max_cost: Optional[float] = None
    min_length: Optional[float] = None
    max_length: Optional[float] = None
    min_crew: Optional[int] = None
    max_crew: Optional[int] = None
    min_passengers: Optional[int] = None
    max_passengers: Optional[int] = None
    min_cargo: Optional[int] = None
    max_cargo: Optional[int] = None

    def clauses(self, alias: str = "s", extra_search: Sequence[str] = ()) -> Tuple[List[str], List[Any]]:
        """WHERE fragments and params. Text filters are case-insensitive substring matches."""
        where: List[str] = []
        params: List[Any] = []

        search = (self.search or "").strip()
        if search:
            columns = [f"{alias}.name", f"{alias}.model", f"{alias}.manufacturer", *extra_search]
            where.append("(" + " OR ".join(f"{c} LIKE ? ESCAPE '\\'" for c in columns) + ")")
            params.extend([_like(search)] * len(columns))

        for value, column in ((self.starship_class, "starship_class"), (self.manufacturer, "manufacturer")):
            text = (value or "").strip()
            if text:
                where.append(f"{alias}.{column} LIKE ? ESCAPE '\\'")
                params.append(_like(text))

        for name, column in RANGE_FILTER_COLUMNS.items():
            low = getattr(self, f"min_{name}")
            high = getattr(self, f"max_{name}")
            if low is not None:
                where.append(f"{alias}.{column} IS NOT NULL AND {alias}.{column} >= ?")
                params.append(low)
            if high is not None:
                where.append(f"{alias}.{column} IS NOT NULL AND {alias}.{column} <= ?")
                params.append(high)

        return where, params


# ── Serialization ──────────────────────────────────────────────────────────────

def starship_list_item(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": int(row["id"]),
        "name": row["name"],
        "model": row["model"],
        "manufacturer": row["manufacturer"],
        "starshipClass": row["starship_class"],
        "costInCredits": row["cost_in_credits"],
        "length": row["length"],
        "crew": row["crew"],
        "passengers": row["passengers"],
        "cargoCapacity": row["cargo_capacity"],
    }


def starship_detail(row: sqlite3.Row) -> Dict[str, Any]:
    out = starship_list_item(row)
    out.update({
        "hyperdriveRating": row["hyperdrive_rating"],
        "mglt": row["mglt"],
        "maxAtmospheringSpeed": row["max_atmosphering_speed"],
        "consumables": row["consumables"],
        "isCatalog": bool(row["is_catalog"]),
        "isActive": bool(row["is_active"]),
    })
    return out


# ── Catalog (read-only) ────────────────────────────────────────────────────────

def list_catalog_starships(
    conn: sqlite3.Connection,
    filters: StarshipFilters,
    *,
    sort: Optional[str] = None,
    direction: Optional[str] = None,
    page: Optional[int] = None,
    page_size: Optional[int] = None,
) -> Dict[str, Any]:
    """Active catalog starships only; retired and user-owned rows never appear."""
    _, size, offset = clamp_paging(page, page_size)
    where, params = filters.clauses("s")
    where = ["s.is_catalog=1", "s.is_active=1", *where]
    where_sql = " AND ".join(where)

    total = conn.execute(f"SELECT COUNT(*) AS n FROM starships s WHERE {where_sql}", params).fetchone()
    rows = conn.execute(
        f"""
        SELECT s.* FROM starships s
        WHERE {where_sql}
        {order_by(sort, direction, CATALOG_SORT_COLUMNS, "name", "s.id")}
        LIMIT ? OFFSET ?
        """,
        (*params, size, offset),
    ).fetchall()

    return {
        "items": [starship_list_item(r) for r in rows],
        "totalCount": int(total["n"]),
    }


def _active_catalog_row(conn: sqlite3.Connection, starship_id: int) -> sqlite3.Row:
    row = conn.execute(
        "SELECT * FROM starships WHERE id=? AND is_catalog=1 AND is_active=1",
        (int(starship_id),),
    ).fetchone()
    if not row:
        raise NotFoundError(f"Starship {starship_id} not found.")
    return row


def _named_links(conn: sqlite3.Connection, sql: str, starship_id: int) -> List[Dict[str, Any]]:
    return [
        {"id": int(r["id"]), "name": r["name"]}
        for r in conn.execute(sql, (int(starship_id),)).fetchall()
    ]


def get_catalog_starship(conn: sqlite3.Connection, starship_id: int) -> Dict[str, Any]:
    row = _active_catalog_row(conn, starship_id)
    out = starship_detail(row)
    out["films"] = _named_links(
        conn,
        """
        SELECT f.id, f.title AS name FROM film_starships fs
        JOIN films f ON f.id=fs.film_id
        WHERE fs.starship_id=? ORDER BY f.title, f.id
        """,
        starship_id,
    )
    out["pilots"] = _named_links(
        conn,
        """
        SELECT p.id, p.name FROM starship_pilots sp
        JOIN people p ON p.id=sp.person_id
        WHERE sp.starship_id=? ORDER BY p.name, p.id
        """,
        starship_id,
    )
    return out


def catalog_filter_options(conn: sqlite3.Connection) -> Dict[str, Any]:
    """Dropdown values and numeric ranges over active catalog starships."""
    def distinct(column: str) -> List[str]:
        rows = conn.execute(
            f"""
            SELECT DISTINCT {column} AS v FROM starships
            WHERE is_catalog=1 AND is_active=1 AND {column} IS NOT NULL AND {column} <> ''
            ORDER BY {column}
            """
        ).fetchall()
        return [str(r["v"]) for r in rows]

    ranges: Dict[str, Dict[str, Any]] = {}
    for name, column in RANGE_FILTER_COLUMNS.items():
        row = conn.execute(
            f"""
            SELECT MIN({column}) AS lo, MAX({column}) AS hi FROM starships
            WHERE is_catalog=1 AND is_active=1 AND {column} IS NOT NULL
            """
        ).fetchone()
        ranges[name] = {"min": row["lo"], "max": row["hi"]}

    return {
        "manufacturers": distinct("manufacturer"),
        "classes": distinct("starship_class"),
        "ranges": ranges,
    }


# ── Fork ───────────────────────────────────────────────────────────────────────

def fork_starship(
    conn: sqlite3.Connection,
    user_id: str,
    catalog_id: int,
    *,
    name: Optional[str] = None,
    add_to_fleet: bool = False,
) -> Dict[str, Any]:
    """Copy an active catalog starship into a row owned by `user_id`.

    Idempotent per (user, catalog ship) while the fork is active: the partial
    unique index on (owner_id, fork_origin_id) turns a second insert into a
    no-op and the existing fork is returned with created=False.
    """
    source = _active_catalog_row(conn, catalog_id)
    fork_name = (name or "").strip() or str(source["name"])
    now = time.time()

    columns = ["is_catalog", "is_active", "owner_id", "fork_origin_id", *STARSHIP_DOMAIN_COLUMNS, "created_at", "updated_at"]
    values: List[Any] = [0, 1, user_id, int(source["id"])]
    values.extend(fork_name if c == "name" else source[c] for c in STARSHIP_DOMAIN_COLUMNS)
    values.extend([now, now])

    cur = conn.execute(
        f"INSERT OR IGNORE INTO starships ({','.join(columns)}) VALUES ({','.join('?' for _ in columns)})",
        values,
    )
    created = cur.rowcount == 1
    if created:
        fork_id = int(cur.lastrowid)
        logger.info("User %s forked catalog starship %s as %s", user_id, source["id"], fork_id)
    else:
        existing = conn.execute(
            """
            SELECT id FROM starships
            WHERE owner_id=? AND fork_origin_id=? AND is_active=1
            """,
            (user_id, int(source["id"])),
        ).fetchone()
        fork_id = int(existing["id"])
    conn.commit()

    if add_to_fleet:
        import fleet_service

        fleet_service.add_item(conn, user_id, fork_id, 1)

    return {"id": fork_id, "baseStarshipId": int(source["id"]), "created": created}


# ── Custom (user-owned) starships ──────────────────────────────────────────────

def validate_custom_fields(conn: sqlite3.Connection, fields: Dict[str, Any], pilot_id: Optional[int]) -> Dict[str, Any]:
    """Normalize an owner-supplied starship payload; raises DomainRuleError on bad input."""
    cleaned: Dict[str, Any] = {}
    for column in STARSHIP_DOMAIN_COLUMNS:
        value = fields.get(column)
        if isinstance(value, str):
            value = value.strip() or None
        cleaned[column] = value

    if not cleaned.get("name"):
        raise DomainRuleError("Name is required.")

    for column, label in NON_NEGATIVE_COLUMNS:
        value = cleaned.get(column)
        if value is not None and value < 0:
            raise DomainRuleError(f"{label} must be zero or greater.")
        if isinstance(value, int) and value > MAX_SQLITE_INTEGER:
            raise DomainRuleError(f"{label} is too large.")

    if pilot_id is not None:
        if not 0 < int(pilot_id) <= MAX_SQLITE_INTEGER:
            raise DomainRuleError(f"Pilot {pilot_id} does not exist.")
        row = conn.execute("SELECT 1 FROM people WHERE id=?", (int(pilot_id),)).fetchone()
        if not row:
            raise DomainRuleError(f"Pilot {pilot_id} does not exist.")
    cleaned["custom_pilot_id"] = int(pilot_id) if pilot_id is not None else None
    return cleaned


def _owned_row(conn: sqlite3.Connection, user_id: str, starship_id: int, *, active_only: bool = True) -> sqlite3.Row:
    sql = "SELECT * FROM starships WHERE id=? AND is_catalog=0 AND owner_id=?"
    if active_only:
        sql += " AND is_active=1"
    row = conn.execute(sql, (int(starship_id), user_id)).fetchone()
    if not row:
        raise NotFoundError(f"Starship {starship_id} not found.")
    return row


def custom_starship_dict(conn: sqlite3.Connection, row: sqlite3.Row) -> Dict[str, Any]:
    out = starship_detail(row)
    out["baseStarshipId"] = row["fork_origin_id"]
    out["pilotId"] = row["custom_pilot_id"]
    out["createdAt"] = row["created_at"]
    out["updatedAt"] = row["updated_at"]

    pilot = None
    if row["custom_pilot_id"] is not None:
        p = conn.execute("SELECT id, name FROM people WHERE id=?", (row["custom_pilot_id"],)).fetchone()
        if p:
            pilot = {"id": int(p["id"]), "name": p["name"]}
    out["pilot"] = pilot

    base = None
    if row["fork_origin_id"] is not None:
        b = conn.execute("SELECT id, name FROM starships WHERE id=?", (row["fork_origin_id"],)).fetchone()
        if b:
            base = {"id": int(b["id"]), "name": b["name"]}
    out["baseStarship"] = base
    return out


def list_custom_starships(
    conn: sqlite3.Connection,
    user_id: str,
    filters: StarshipFilters,
    *,
    sort: Optional[str] = None,
    direction: Optional[str] = None,
    page: Optional[int] = None,
    page_size: Optional[int] = None,
) -> Dict[str, Any]:
    _, size, offset = clamp_paging(page, page_size, default_size=25)
    where, params = filters.clauses("s")
    where = ["s.is_catalog=0", "s.is_active=1", "s.owner_id=?", *where]
    params = [user_id, *params]
    where_sql = " AND ".join(where)

    total = conn.execute(f"SELECT COUNT(*) AS n FROM starships s WHERE {where_sql}", params).fetchone()
    rows = conn.execute(
        f"""
        SELECT s.* FROM starships s
        WHERE {where_sql}
        {order_by(sort, direction, CUSTOM_SORT_COLUMNS, "name", "s.id")}
        LIMIT ? OFFSET ?
        """,
        (*params, size, offset),
    ).fetchall()

    items = []
    for r in rows:
        item = starship_list_item(r)
        item.update({
            "hyperdriveRating": r["hyperdrive_rating"],
            "mglt": r["mglt"],
            "consumables": r["consumables"],
            "baseStarshipId": r["fork_origin_id"],
        })
        items.append(item)
    return {"items": items, "totalCount": int(total["n"])}


def get_custom_starship(conn: sqlite3.Connection, user_id: str, starship_id: int) -> Dict[str, Any]:
    return custom_starship_dict(conn, _owned_row(conn, user_id, starship_id))


def create_custom_starship(conn: sqlite3.Connection, user_id: str, fields: Dict[str, Any], pilot_id: Optional[int] = None) -> Dict[str, Any]:
    """From-scratch custom starship (no fork origin)."""
    values = validate_custom_fields(conn, fields, pilot_id)
    now = time.time()
    values.update({
        "is_catalog": 0,
        "is_active": 1,
        "owner_id": user_id,
        "created_at": now,
        "updated_at": now,
    })
    columns = list(values.keys())
    cur = conn.execute(
        f"INSERT INTO starships ({','.join(columns)}) VALUES ({','.join('?' for _ in columns)})",
        tuple(values[c] for c in columns),
    )
    conn.commit()
    starship_id = int(cur.lastrowid)
    logger.info("User %s created custom starship %s", user_id, starship_id)
    return get_custom_starship(conn, user_id, starship_id)


def update_custom_starship(
    conn: sqlite3.Connection,
    user_id: str,
    starship_id: int,
    fields: Dict[str, Any],
    pilot_id: Optional[int] = None,
) -> Dict[str, Any]:
    """Full replace of an owned, active starship's attributes. Lineage is unchanged."""
    _owned_row(conn, user_id, starship_id)
    values = validate_custom_fields(conn, fields, pilot_id)
    values["updated_at"] = time.time()
    assignments = ",".join(f"{c}=?" for c in values)
    conn.execute(
        f"UPDATE starships SET {assignments} WHERE id=? AND owner_id=? AND is_catalog=0",
        (*values.values(), int(starship_id), user_id),
    )
    conn.commit()
    return get_custom_starship(conn, user_id, starship_id)


def delete_custom_starship(conn: sqlite3.Connection, user_id: str, starship_id: int) -> None:
    """Soft delete. Deleting an already-inactive owned row is a no-op."""
    row = _owned_row(conn, user_id, starship_id, active_only=False)
    if not int(row["is_active"]):
        return
    conn.execute(
        "UPDATE starships SET is_active=0, updated_at=? WHERE id=?",
        (time.time(), int(starship_id)),
    )
    conn.commit()
    logger.info("User %s deleted starship %s", user_id, starship_id)
