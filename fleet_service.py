"""
Per-user fleets: quantity-and-nickname tagged references to starships.

A fleet row is created lazily on first add. Adding a starship already in the
fleet increments its quantity in a single upsert against
UNIQUE(fleet_id, starship_id).
"""

import logging
import sqlite3
import time
from typing import Any, Dict, Optional

from constants import MAX_FLEET_QUANTITY
from errors import DomainRuleError, ForbiddenError, NotFoundError
from starship_service import StarshipFilters, clamp_paging, order_by

logger = logging.getLogger(__name__)

FLEET_SORT_COLUMNS: Dict[str, str] = {
    "name": "s.name",
    "manufacturer": "s.manufacturer",
    "class": "s.starship_class",
    "cost": "s.cost_in_credits",
    "length": "s.length",
    "crew": "s.crew",
    "quantity": "fi.quantity",
    "addedat": "fi.added_at",
}


def _clamp_quantity(quantity: Optional[int]) -> int:
    q = int(quantity if quantity is not None else 1)
    if q > MAX_FLEET_QUANTITY:
        raise DomainRuleError(f"Quantity cannot exceed {MAX_FLEET_QUANTITY}.")
    return q if q >= 1 else 1


def _fleet_id(conn: sqlite3.Connection, user_id: str) -> Optional[int]:
    row = conn.execute("SELECT id FROM fleets WHERE user_id=?", (user_id,)).fetchone()
    return int(row["id"]) if row else None


def ensure_fleet(conn: sqlite3.Connection, user_id: str) -> int:
    conn.execute(
        "INSERT OR IGNORE INTO fleets (user_id,created_at) VALUES (?,?)",
        (user_id, time.time()),
    )
    return int(_fleet_id(conn, user_id))


def add_item(conn: sqlite3.Connection, user_id: str, starship_id: int, quantity: Optional[int] = 1) -> Dict[str, Any]:
    """Insert-or-increment a fleet item. Returns the item's resulting state."""
    ship = conn.execute(
        "SELECT id, is_catalog, is_active, owner_id FROM starships WHERE id=?",
        (int(starship_id),),
    ).fetchone()
    if not ship:
        raise NotFoundError(f"Starship {starship_id} not found.")
    if not int(ship["is_active"]):
        if int(ship["is_catalog"]):
            raise DomainRuleError("Cannot add a retired catalog ship to fleet.")
        raise DomainRuleError("Cannot add an inactive custom ship to fleet.")
    if not int(ship["is_catalog"]) and str(ship["owner_id"]) != str(user_id):
        raise ForbiddenError("You can only add your own custom starships to your fleet.")

    qty = _clamp_quantity(quantity)
    fleet_id = ensure_fleet(conn, user_id)
    cur = conn.execute(
        """
        INSERT INTO fleet_items (fleet_id,starship_id,quantity,nickname,added_at)
        VALUES (?,?,?,NULL,?)
        ON CONFLICT(fleet_id, starship_id) DO UPDATE SET quantity = quantity + excluded.quantity
        WHERE quantity + excluded.quantity <= ?
        """,
        (fleet_id, int(starship_id), qty, time.time(), MAX_FLEET_QUANTITY),
    )
    if cur.rowcount == 0:
        conn.rollback()
        raise DomainRuleError(f"Fleet quantity for starship {starship_id} cannot exceed {MAX_FLEET_QUANTITY}.")
    conn.commit()

    row = conn.execute(
        "SELECT quantity FROM fleet_items WHERE fleet_id=? AND starship_id=?",
        (fleet_id, int(starship_id)),
    ).fetchone()
    logger.info("User %s fleet %s: starship %s x%d (now %d)", user_id, fleet_id, starship_id, qty, int(row["quantity"]))
    return {"fleetId": fleet_id, "starshipId": int(starship_id), "quantity": int(row["quantity"])}


def _owned_item(conn: sqlite3.Connection, user_id: str, starship_id: int) -> sqlite3.Row:
    fleet_id = _fleet_id(conn, user_id)
    if fleet_id is None:
        raise NotFoundError("Fleet not found.")
    item = conn.execute(
        "SELECT id, fleet_id, quantity, nickname FROM fleet_items WHERE fleet_id=? AND starship_id=?",
        (fleet_id, int(starship_id)),
    ).fetchone()
    if not item:
        raise NotFoundError("Fleet item not found.")
    return item


def update_item(
    conn: sqlite3.Connection,
    user_id: str,
    starship_id: int,
    *,
    quantity: Optional[int] = None,
    nickname: Optional[str] = None,
    set_nickname: bool = False,
) -> Dict[str, Any]:
    """Set quantity and/or nickname on an item in the caller's own fleet.

    Quantity below 1 is clamped to 1; a blank nickname clears it.
    """
    item = _owned_item(conn, user_id, starship_id)
    new_quantity = int(item["quantity"]) if quantity is None else _clamp_quantity(quantity)
    new_nickname = item["nickname"]
    if set_nickname:
        new_nickname = (nickname or "").strip() or None

    conn.execute(
        "UPDATE fleet_items SET quantity=?, nickname=? WHERE id=?",
        (new_quantity, new_nickname, int(item["id"])),
    )
    conn.commit()
    return {"starshipId": int(starship_id), "quantity": new_quantity, "nickname": new_nickname}


def remove_item(conn: sqlite3.Connection, user_id: str, starship_id: int) -> None:
    item = _owned_item(conn, user_id, starship_id)
    conn.execute("DELETE FROM fleet_items WHERE id=?", (int(item["id"]),))
    conn.commit()
    logger.info("User %s removed starship %s from fleet", user_id, starship_id)


def _item_dict(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        "starshipId": int(row["starship_id"]),
        "name": row["name"],
        "manufacturer": row["manufacturer"],
        "starshipClass": row["starship_class"],
        "quantity": int(row["quantity"]),
        "nickname": row["nickname"],
        "addedAt": float(row["added_at"]),
        "isCatalog": bool(row["is_catalog"]),
        "isActive": bool(row["is_active"]),
    }


def get_fleet(conn: sqlite3.Connection, user_id: str) -> Dict[str, Any]:
    """Whole fleet, newest first. Retired/deleted ships stay listed with their flags."""
    fleet_id = _fleet_id(conn, user_id)
    if fleet_id is None:
        return {"fleetId": 0, "items": []}
    rows = conn.execute(
        """
        SELECT fi.starship_id, fi.quantity, fi.nickname, fi.added_at,
               s.name, s.manufacturer, s.starship_class, s.is_catalog, s.is_active
        FROM fleet_items fi
        JOIN starships s ON s.id=fi.starship_id
        WHERE fi.fleet_id=?
        ORDER BY fi.added_at DESC, fi.id DESC
        """,
        (fleet_id,),
    ).fetchall()
    return {"fleetId": fleet_id, "items": [_item_dict(r) for r in rows]}


def list_items(
    conn: sqlite3.Connection,
    user_id: str,
    filters: StarshipFilters,
    *,
    sort: Optional[str] = None,
    direction: Optional[str] = None,
    page: Optional[int] = None,
    page_size: Optional[int] = None,
) -> Dict[str, Any]:
    """Paged, filterable view of the caller's fleet items. Search also matches nickname."""
    fleet_id = _fleet_id(conn, user_id)
    if fleet_id is None:
        return {"items": [], "totalCount": 0}

    _, size, offset = clamp_paging(page, page_size)
    where, params = filters.clauses("s", extra_search=("fi.nickname",))
    where = ["fi.fleet_id=?", *where]
    params = [fleet_id, *params]
    where_sql = " AND ".join(where)

    total = conn.execute(
        f"SELECT COUNT(*) AS n FROM fleet_items fi JOIN starships s ON s.id=fi.starship_id WHERE {where_sql}",
        params,
    ).fetchone()
    rows = conn.execute(
        f"""
        SELECT fi.starship_id, fi.quantity, fi.nickname, fi.added_at,
               s.name, s.manufacturer, s.starship_class, s.cost_in_credits, s.length, s.crew,
               s.is_catalog, s.is_active
        FROM fleet_items fi
        JOIN starships s ON s.id=fi.starship_id
        WHERE {where_sql}
        {order_by(sort, direction, FLEET_SORT_COLUMNS, "addedat", "fi.starship_id")}
        LIMIT ? OFFSET ?
        """,
        (*params, size, offset),
    ).fetchall()

    items = []
    for r in rows:
        item = _item_dict(r)
        item.update({
            "costInCredits": r["cost_in_credits"],
            "length": r["length"],
            "crew": r["crew"],
        })
        items.append(item)
    return {"items": items, "totalCount": int(total["n"])}
