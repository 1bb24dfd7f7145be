"""
Admin catalog-sync API routes.

Handles:
  /api/admin/sync         (POST, run one full catalog sync)
  /api/admin/sync/runs    (GET, recent run log)
"""

import hmac
import logging
import os
import sqlite3
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from auth_service import require_admin
from db import get_db
from errors import DuplicatePreflightError, FeedError, SyncInProgressError, SyncStageError
import swapi_client
import sync_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])

SYNC_API_KEY = os.environ.get("SYNC_API_KEY", "").strip()
SYNC_KEY_HEADER = "X-Sync-Key"
ALLOW_SYNC_IN_PRODUCTION = os.environ.get("ALLOW_SYNC_IN_PRODUCTION", "0").strip().lower() in ("1", "true", "yes")


class SyncReq(BaseModel):
    source: Optional[str] = None
    augment: Optional[bool] = None


def _check_sync_allowed(request: Request) -> None:
    if sync_service.is_production_like() and not ALLOW_SYNC_IN_PRODUCTION:
        raise HTTPException(
            status_code=403,
            detail="Catalog sync is disabled in this environment. Set ALLOW_SYNC_IN_PRODUCTION=1 to enable.",
        )
    if SYNC_API_KEY:
        provided = (request.headers.get(SYNC_KEY_HEADER) or "").strip()
        if not hmac.compare_digest(provided, SYNC_API_KEY):
            raise HTTPException(status_code=401, detail=f"Missing or invalid {SYNC_KEY_HEADER}.")


@router.post("/api/admin/sync")
def api_admin_sync(
    request: Request,
    req: Optional[SyncReq] = None,
    conn: sqlite3.Connection = Depends(get_db),
) -> Dict[str, Any]:
    admin = require_admin(conn, request)
    _check_sync_allowed(request)
    body = req or SyncReq()

    try:
        source = swapi_client.build_feed_source(body.source)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    username = str(admin["username"])
    logger.info("Admin %s triggered catalog sync from %s", username, source.describe())
    try:
        result = sync_service.run_sync(conn, source, augment=body.augment, triggered_by=username)
    except SyncInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SyncStageError as e:
        cause = e.__cause__
        diagnostic: Dict[str, Any] = {
            "ok": False,
            "stage": e.stage,
            "error": str(e),
            "counts": e.counts,
        }
        status = 500
        if isinstance(cause, DuplicatePreflightError):
            diagnostic["conflicts"] = cause.conflicts
            status = 409
        elif isinstance(cause, FeedError):
            status = 502
        logger.warning("Catalog sync requested by %s failed at %s: %s", username, e.stage, e)
        raise HTTPException(status_code=status, detail=diagnostic)

    logger.info(
        "Catalog sync by %s finished: retired=%d counts=%s",
        username, result["retired"], result["counts"],
    )
    return result


@router.get("/api/admin/sync/runs")
def api_admin_sync_runs(request: Request, limit: int = 20, conn: sqlite3.Connection = Depends(get_db)) -> Dict[str, Any]:
    require_admin(conn, request)
    return {"runs": sync_service.list_sync_runs(conn, limit)}
