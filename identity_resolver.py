"""
Per-run identity bookkeeping: maps (kind, origin key) and (kind, display name)
to internal row ids.

One resolver is created per sync run and passed explicitly through every
stage; nothing here is process-wide.
"""

import sqlite3
from typing import Dict, Iterable, Optional

from constants import KIND_NAME_COLUMNS, KIND_STARSHIPS, KIND_TABLES, ORIGIN_EXTERNAL, SYNC_KIND_ORDER


def _key(value: str) -> str:
    return value.strip().lower()


class IdentityResolver:
    def __init__(self, kinds: Iterable[str] = SYNC_KIND_ORDER):
        self._by_key: Dict[str, Dict[str, Dict[str, int]]] = {}
        self._by_name: Dict[str, Dict[str, int]] = {}
        for kind in kinds:
            self._by_key[kind] = {}
            self._by_name[kind] = {}

    # ── bookkeeping ──

    def remember(self, kind: str, origin: str, origin_key: str, row_id: int, name: Optional[str] = None) -> None:
        self._by_key[kind].setdefault(origin, {})[_key(origin_key)] = int(row_id)
        if name and name.strip():
            # First writer wins so external rows keep precedence over later local rows.
            self._by_name[kind].setdefault(_key(name), int(row_id))

    def load_existing(self, conn: sqlite3.Connection, kind: str) -> None:
        """Seed the maps for one kind from rows already in the store (external first)."""
        table = KIND_TABLES[kind]
        name_column = KIND_NAME_COLUMNS[kind]
        where = "WHERE is_catalog=1" if kind == KIND_STARSHIPS else ""
        rows = conn.execute(
            f"""
            SELECT id, origin, origin_key, {name_column} AS display_name
            FROM {table}
            {where}
            ORDER BY CASE WHEN origin=? THEN 0 ELSE 1 END, id
            """,
            (ORIGIN_EXTERNAL,),
        ).fetchall()
        for row in rows:
            self.remember(kind, str(row["origin"]), str(row["origin_key"]), int(row["id"]), row["display_name"])

    # ── lookups ──

    def resolve_key(self, kind: str, origin_key: Optional[str], origin: Optional[str] = None) -> Optional[int]:
        if not origin_key or not origin_key.strip():
            return None
        by_origin = self._by_key.get(kind) or {}
        key = _key(origin_key)
        if origin is not None:
            return (by_origin.get(origin) or {}).get(key)
        for origin_name in sorted(by_origin, key=lambda o: 0 if o == ORIGIN_EXTERNAL else 1):
            found = by_origin[origin_name].get(key)
            if found is not None:
                return found
        return None

    def resolve_name(self, kind: str, name: Optional[str]) -> Optional[int]:
        if not name or not name.strip():
            return None
        return (self._by_name.get(kind) or {}).get(_key(name))

    def resolve(self, kind: str, reference: Optional[str]) -> Optional[int]:
        """Resolve by origin key (any origin), falling back to display name."""
        found = self.resolve_key(kind, reference)
        if found is not None:
            return found
        return self.resolve_name(kind, reference)

    def keys(self, kind: str, origin: str) -> set[str]:
        return set((self._by_key.get(kind) or {}).get(origin, {}).keys())

    def count(self, kind: str, origin: Optional[str] = None) -> int:
        by_origin = self._by_key.get(kind) or {}
        if origin is not None:
            return len(by_origin.get(origin) or {})
        return sum(len(v) for v in by_origin.values())
