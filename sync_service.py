"""
Catalog sync pipeline.

A run ingests the external feed and the local dataset into the shared store:

  1. upsert     : per kind, in dependency order, keyed by (origin, origin_key)
  2. rebuild    : clear and regenerate association edges owned by external rows
  3. preflight  : (non-production only) abort if local names shadow external ones
  4. augment    : insert-only ingestion of the local dataset, then its edges
  5. retire     : deactivate catalog starships that left the feed

Runs are serialized per process; each stage commits before the next reads its
results, so an interrupted run is safe to re-run.
"""

import json
import logging
import os
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

import catalog_service
from catalog_models import FeedRecord
from constants import (
    KIND_PLANETS,
    KIND_STARSHIPS,
    ORIGIN_EXTERNAL,
    ORIGIN_LOCAL,
    PRODUCTION_LIKE_ENVS,
    SYNC_KIND_ORDER,
)
from errors import DuplicatePreflightError, SyncInProgressError, SyncStageError
from identity_resolver import IdentityResolver

logger = logging.getLogger(__name__)

APP_ENV = os.environ.get("APP_ENV", "development").strip().lower()
LOCAL_AUGMENT_ENABLED = os.environ.get("LOCAL_AUGMENT_ENABLED", "1").strip().lower() in ("1", "true", "yes")
SYNC_ON_STARTUP = os.environ.get("SYNC_ON_STARTUP", "0").strip().lower() in ("1", "true", "yes")

_SYNC_LOCK = threading.Lock()

FeedBatch = Dict[str, List[FeedRecord]]


def is_production_like(environment: Optional[str] = None) -> bool:
    return (environment or APP_ENV).strip().lower() in PRODUCTION_LIKE_ENVS


def _new_counts() -> Dict[str, Dict[str, int]]:
    return {kind: {"inserted": 0, "updated": 0, "skipped": 0} for kind in SYNC_KIND_ORDER}


# ── Feed ───────────────────────────────────────────────────────────────────────

def fetch_feed_kind(source: Any, kind: str) -> List[FeedRecord]:
    """Fetch and validate one kind; records without a stable identifier are dropped."""
    spec = catalog_service.KIND_SPECS[kind]
    records: List[FeedRecord] = []
    for raw in source.fetch_all(kind):
        try:
            record = spec.feed_model.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Dropping malformed %s feed record: %s", kind, exc)
            continue
        if not record.origin_key:
            logger.warning("Dropping %s feed record without url: %r", kind, record.display_name)
            continue
        records.append(record)
    return records


# ── Upsert stage ───────────────────────────────────────────────────────────────

def _insert_row(conn: sqlite3.Connection, table: str, values: Dict[str, Any]) -> int:
    columns = list(values.keys())
    placeholders = ",".join("?" for _ in columns)
    cur = conn.execute(
        f"INSERT INTO {table} ({','.join(columns)}) VALUES ({placeholders})",
        tuple(values[c] for c in columns),
    )
    return int(cur.lastrowid)


def _update_row(conn: sqlite3.Connection, table: str, row_id: int, values: Dict[str, Any]) -> None:
    assignments = ",".join(f"{c}=?" for c in values)
    conn.execute(
        f"UPDATE {table} SET {assignments} WHERE id=?",
        tuple(values.values()) + (row_id,),
    )


def _homeworld_id(spec: catalog_service.KindSpec, record: FeedRecord, resolver: IdentityResolver) -> Optional[int]:
    ref = getattr(record, spec.homeworld_field or "", None)
    if not ref:
        return None
    return resolver.resolve(KIND_PLANETS, ref)


def upsert_kind(
    conn: sqlite3.Connection,
    kind: str,
    records: Iterable[FeedRecord],
    resolver: IdentityResolver,
    counts: Dict[str, int],
) -> None:
    """Create or fully replace externally-sourced rows of one kind.

    Catalog starships that reappear upstream are forced back to active.
    """
    spec = catalog_service.KIND_SPECS[kind]
    now = time.time()

    for record in records:
        key = record.origin_key
        values = spec.values_for(record)
        if spec.homeworld_field:
            values["homeworld_id"] = _homeworld_id(spec, record, resolver)
        if kind == KIND_STARSHIPS:
            values["is_catalog"] = 1
            values["is_active"] = 1
            values["updated_at"] = now

        existing = conn.execute(
            f"SELECT id FROM {spec.table} WHERE origin=? AND origin_key=?",
            (ORIGIN_EXTERNAL, key),
        ).fetchone()

        if existing:
            row_id = int(existing["id"])
            _update_row(conn, spec.table, row_id, values)
            counts["updated"] += 1
        else:
            values["origin"] = ORIGIN_EXTERNAL
            values["origin_key"] = key
            if kind == KIND_STARSHIPS:
                values["created_at"] = now
            row_id = _insert_row(conn, spec.table, values)
            counts["inserted"] += 1

        resolver.remember(kind, ORIGIN_EXTERNAL, key, row_id, record.display_name)

    conn.commit()
    logger.info(
        "Upserted %s: %d inserted, %d updated",
        kind, counts["inserted"], counts["updated"],
    )


# ── Relationship rebuild ───────────────────────────────────────────────────────

def rebuild_relationships(conn: sqlite3.Connection, feed: FeedBatch, resolver: IdentityResolver) -> Dict[str, int]:
    """Clear and regenerate every edge owned by an externally-sourced row.

    Edges written by local augmentation are left alone. References that do
    not resolve within this run's batch are skipped.
    """
    inserted: Dict[str, int] = {}
    unresolved = 0
    try:
        for table, owner_column, owner_table in catalog_service.edge_tables():
            conn.execute(
                f"""
                DELETE FROM {table}
                WHERE source=?
                  AND {owner_column} IN (SELECT id FROM {owner_table} WHERE origin=?)
                """,
                (ORIGIN_EXTERNAL, ORIGIN_EXTERNAL),
            )
            inserted[table] = 0

        for kind in SYNC_KIND_ORDER:
            for relation in catalog_service.relations_for(kind, owned_only=True):
                rows: List[Tuple[int, int]] = []
                for record in feed.get(kind, []):
                    owner_id = resolver.resolve_key(kind, record.origin_key, ORIGIN_EXTERNAL)
                    if owner_id is None:
                        continue
                    for ref in getattr(record, relation.field, []):
                        target_id = resolver.resolve_key(relation.other_kind, ref, ORIGIN_EXTERNAL)
                        if target_id is None:
                            unresolved += 1
                            logger.debug("Unresolved %s.%s reference %s", kind, relation.field, ref)
                            continue
                        rows.append((owner_id, target_id))

                before = conn.total_changes
                conn.executemany(
                    f"""
                    INSERT OR IGNORE INTO {relation.table} ({relation.self_column},{relation.other_column},source)
                    VALUES (?,?,'{ORIGIN_EXTERNAL}')
                    """,
                    rows,
                )
                inserted[relation.table] += conn.total_changes - before

        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise

    logger.info(
        "Rebuilt relationships: %d edges, %d unresolved references skipped",
        sum(inserted.values()), unresolved,
    )
    return inserted


# ── Duplicate preflight ────────────────────────────────────────────────────────

def find_local_duplicates(conn: sqlite3.Connection, local_dataset: FeedBatch) -> Dict[str, List[str]]:
    """Local record names (per kind) that match an externally-sourced row, case-insensitively."""
    conflicts: Dict[str, List[str]] = {}
    for kind in SYNC_KIND_ORDER:
        records = local_dataset.get(kind) or []
        if not records:
            continue
        spec = catalog_service.KIND_SPECS[kind]
        where = " AND is_catalog=1" if kind == KIND_STARSHIPS else ""
        external_names = {
            str(r["display_name"]).strip().lower()
            for r in conn.execute(
                f"SELECT {spec.name_column} AS display_name FROM {spec.table} WHERE origin=?{where}",
                (ORIGIN_EXTERNAL,),
            ).fetchall()
        }
        names = sorted({
            record.display_name
            for record in records
            if record.display_name.lower() in external_names
        })
        if names:
            conflicts[kind] = names
    return conflicts


def preflight_check(conn: sqlite3.Connection, local_dataset: FeedBatch) -> None:
    conflicts = find_local_duplicates(conn, local_dataset)
    if conflicts:
        raise DuplicatePreflightError(conflicts)


# ── Local augmentation ─────────────────────────────────────────────────────────

def augment_kind(
    conn: sqlite3.Connection,
    kind: str,
    records: Iterable[FeedRecord],
    resolver: IdentityResolver,
    counts: Dict[str, int],
    inserted_records: List[Tuple[str, FeedRecord, int]],
) -> None:
    """Insert local records that resolve to no existing row; never touches existing rows."""
    spec = catalog_service.KIND_SPECS[kind]
    now = time.time()
    inserted = skipped = 0

    for record in records:
        key = record.origin_key
        name = record.display_name
        if resolver.resolve_key(kind, key) is not None or resolver.resolve_name(kind, name) is not None:
            counts["skipped"] += 1
            skipped += 1
            logger.warning("Skipping local %s record %s (%r): already present", kind, key, name)
            continue

        values = spec.values_for(record)
        if spec.homeworld_field:
            values["homeworld_id"] = _homeworld_id(spec, record, resolver)
        if kind == KIND_STARSHIPS:
            values["is_catalog"] = 1
            values["is_active"] = 1
            values["created_at"] = now
            values["updated_at"] = now
        values["origin"] = ORIGIN_LOCAL
        values["origin_key"] = key

        row_id = _insert_row(conn, spec.table, values)
        counts["inserted"] += 1
        inserted += 1
        resolver.remember(kind, ORIGIN_LOCAL, key, row_id, name)
        inserted_records.append((kind, record, row_id))

    conn.commit()
    logger.info("Augmented %s: %d inserted, %d skipped", kind, inserted, skipped)


def attach_local_relationships(
    conn: sqlite3.Connection,
    inserted_records: List[Tuple[str, FeedRecord, int]],
    resolver: IdentityResolver,
) -> int:
    """Add edges for newly inserted local rows; references may be external keys, local ids or names."""
    added = 0
    for kind, record, row_id in inserted_records:
        for relation in catalog_service.relations_for(kind):
            for ref in getattr(record, relation.field, []):
                target_id = resolver.resolve(relation.other_kind, ref)
                if target_id is None:
                    logger.warning(
                        "Local %s %s: %s reference %r does not resolve",
                        kind, record.origin_key, relation.field, ref,
                    )
                    continue
                cur = conn.execute(
                    f"""
                    INSERT OR IGNORE INTO {relation.table} ({relation.self_column},{relation.other_column},source)
                    VALUES (?,?,?)
                    """,
                    (row_id, target_id, ORIGIN_LOCAL),
                )
                added += cur.rowcount
    conn.commit()
    return added


def build_local_resolver(conn: sqlite3.Connection) -> IdentityResolver:
    resolver = IdentityResolver()
    for kind in SYNC_KIND_ORDER:
        resolver.load_existing(conn, kind)
    return resolver


# ── Retirement sweep ───────────────────────────────────────────────────────────

def retire_missing_starships(conn: sqlite3.Connection, feed_keys: Iterable[str]) -> int:
    """Deactivate active external catalog starships whose origin key left the feed."""
    current = set(feed_keys)
    rows = conn.execute(
        """
        SELECT id, origin_key, name FROM starships
        WHERE is_catalog=1 AND origin=? AND is_active=1
        """,
        (ORIGIN_EXTERNAL,),
    ).fetchall()

    retired = 0
    now = time.time()
    for row in rows:
        if str(row["origin_key"]) in current:
            continue
        conn.execute(
            "UPDATE starships SET is_active=0, updated_at=? WHERE id=? AND is_active=1",
            (now, int(row["id"])),
        )
        retired += 1
        logger.info("Retired catalog starship %s (%s): no longer in feed", row["id"], row["name"])
    conn.commit()
    return retired


# ── Run bookkeeping ────────────────────────────────────────────────────────────

def _start_run(conn: sqlite3.Connection, environment: str, triggered_by: Optional[str]) -> int:
    cur = conn.execute(
        "INSERT INTO sync_runs (started_at,status,environment,triggered_by) VALUES (?,?,?,?)",
        (time.time(), "running", environment, triggered_by),
    )
    conn.commit()
    return int(cur.lastrowid)


def _finish_run(conn: sqlite3.Connection, run_id: int, status: str, result: Dict[str, Any], error: Optional[str] = None) -> None:
    conn.execute(
        "UPDATE sync_runs SET finished_at=?, status=?, result_json=?, error=? WHERE id=?",
        (time.time(), status, json.dumps(result, sort_keys=True), error, run_id),
    )
    conn.commit()


def list_sync_runs(conn: sqlite3.Connection, limit: int = 20) -> List[Dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT id, started_at, finished_at, status, environment, triggered_by, result_json, error
        FROM sync_runs ORDER BY id DESC LIMIT ?
        """,
        (max(1, min(int(limit), 200)),),
    ).fetchall()
    return [
        {
            "id": int(r["id"]),
            "started_at": float(r["started_at"]),
            "finished_at": r["finished_at"],
            "status": str(r["status"]),
            "environment": str(r["environment"]),
            "triggered_by": r["triggered_by"],
            "result": json.loads(r["result_json"] or "{}"),
            "error": r["error"],
        }
        for r in rows
    ]


# ── Pipeline ───────────────────────────────────────────────────────────────────

def run_sync(
    conn: sqlite3.Connection,
    source: Any,
    *,
    augment: Optional[bool] = None,
    environment: Optional[str] = None,
    local_data_dir: Optional[Path] = None,
    triggered_by: Optional[str] = None,
) -> Dict[str, Any]:
    """Run one full sync: upsert -> rebuild -> (preflight) -> augment -> retire.

    Raises SyncInProgressError if another run holds the lock, and
    SyncStageError (chained to the underlying failure) if a stage fails.
    """
    if not _SYNC_LOCK.acquire(blocking=False):
        raise SyncInProgressError("A catalog sync is already running")

    env = (environment or APP_ENV).strip().lower()
    do_augment = LOCAL_AUGMENT_ENABLED if augment is None else bool(augment)
    started = time.time()
    counts = _new_counts()
    result: Dict[str, Any] = {
        "ok": False,
        "environment": env,
        "source": source.describe() if hasattr(source, "describe") else type(source).__name__,
        "counts": counts,
        "relationships": {},
        "local_relationships": 0,
        "retired": 0,
        "preflight": "disabled",
    }
    stage = "start"
    run_id: Optional[int] = None

    try:
        run_id = _start_run(conn, env, triggered_by)
        logger.info("Catalog sync %d started (env=%s, augment=%s)", run_id, env, do_augment)

        feed: FeedBatch = {}
        resolver = IdentityResolver()
        for kind in SYNC_KIND_ORDER:
            stage = f"fetch:{kind}"
            feed[kind] = fetch_feed_kind(source, kind)
            stage = f"upsert:{kind}"
            upsert_kind(conn, kind, feed[kind], resolver, counts[kind])

        stage = "rebuild"
        result["relationships"] = rebuild_relationships(conn, feed, resolver)

        if do_augment:
            stage = "load_local"
            local_dataset = catalog_service.load_local_dataset(local_data_dir)

            if is_production_like(env):
                result["preflight"] = "skipped"
            else:
                stage = "preflight"
                preflight_check(conn, local_dataset)
                result["preflight"] = "passed"

            local_resolver = build_local_resolver(conn)
            inserted_records: List[Tuple[str, FeedRecord, int]] = []
            for kind in SYNC_KIND_ORDER:
                stage = f"augment:{kind}"
                augment_kind(conn, kind, local_dataset.get(kind, []), local_resolver, counts[kind], inserted_records)
            stage = "augment:relationships"
            result["local_relationships"] = attach_local_relationships(conn, inserted_records, local_resolver)

        stage = "retire"
        result["retired"] = retire_missing_starships(conn, (r.origin_key for r in feed[KIND_STARSHIPS]))

        result["ok"] = True
        result["duration_s"] = round(time.time() - started, 3)
        _finish_run(conn, run_id, "succeeded", result)
        logger.info("Catalog sync %d finished in %.2fs: retired=%d", run_id, result["duration_s"], result["retired"])
        return result
    except Exception as exc:
        conn.rollback()
        logger.exception("Catalog sync failed during stage %s", stage)
        result["stage"] = stage
        result["error"] = str(exc)
        if isinstance(exc, DuplicatePreflightError):
            result["conflicts"] = exc.conflicts
        if run_id is not None:
            _finish_run(conn, run_id, "failed", result, error=str(exc))
        raise SyncStageError(stage, str(exc), counts) from exc
    finally:
        _SYNC_LOCK.release()


def catalog_is_empty(conn: sqlite3.Connection) -> bool:
    row = conn.execute("SELECT 1 FROM starships WHERE is_catalog=1 LIMIT 1").fetchone()
    return row is None


def bootstrap_catalog_if_empty(conn: sqlite3.Connection, source_factory) -> Optional[Dict[str, Any]]:
    """Startup hook: run one sync when enabled and the catalog has no starships."""
    if not SYNC_ON_STARTUP or not catalog_is_empty(conn):
        return None
    try:
        return run_sync(conn, source_factory(), triggered_by="startup")
    except (SyncStageError, SyncInProgressError):
        logger.error("Bootstrap catalog sync failed; starting with an empty catalog")
        return None
