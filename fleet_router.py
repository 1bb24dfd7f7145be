"""
Fleet API routes.

Handles:
  /api/fleet
  /api/fleet/items
  /api/fleet/items/{starship_id}
"""

import sqlite3
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from auth_service import require_user_id
from catalog_router import starship_filters
from constants import MAX_FLEET_QUANTITY, MAX_SQLITE_INTEGER
from db import get_db
from errors import DomainRuleError, ForbiddenError, NotFoundError
import fleet_service
from starship_service import StarshipFilters

router = APIRouter(tags=["fleet"])


# ── Pydantic models ────────────────────────────────────────

class FleetAddReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    starship_id: int = Field(alias="starshipId", le=MAX_SQLITE_INTEGER)
    quantity: Optional[int] = Field(default=1, le=MAX_FLEET_QUANTITY)


class FleetUpdateReq(BaseModel):
    quantity: Optional[int] = Field(default=None, le=MAX_FLEET_QUANTITY)
    nickname: Optional[str] = None


# ── Routes ─────────────────────────────────────────────────

@router.get("/api/fleet")
def api_fleet(request: Request, conn: sqlite3.Connection = Depends(get_db)) -> Dict[str, Any]:
    user_id = require_user_id(conn, request)
    return fleet_service.get_fleet(conn, user_id)


@router.get("/api/fleet/items")
def api_fleet_items(
    request: Request,
    filters: StarshipFilters = Depends(starship_filters),
    sort: Optional[str] = None,
    dir: Optional[str] = None,
    page: int = 1,
    page_size: int = Query(default=20, alias="pageSize"),
    conn: sqlite3.Connection = Depends(get_db),
) -> Dict[str, Any]:
    user_id = require_user_id(conn, request)
    return fleet_service.list_items(
        conn, user_id, filters, sort=sort, direction=dir, page=page, page_size=page_size,
    )


@router.post("/api/fleet/items", status_code=204)
def api_fleet_add(req: FleetAddReq, request: Request, conn: sqlite3.Connection = Depends(get_db)) -> Response:
    user_id = require_user_id(conn, request)
    try:
        fleet_service.add_item(conn, user_id, req.starship_id, req.quantity)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ForbiddenError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except DomainRuleError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return Response(status_code=204)


@router.patch("/api/fleet/items/{starship_id}")
def api_fleet_update(
    starship_id: int,
    req: FleetUpdateReq,
    request: Request,
    conn: sqlite3.Connection = Depends(get_db),
) -> Dict[str, Any]:
    user_id = require_user_id(conn, request)
    try:
        return fleet_service.update_item(
            conn,
            user_id,
            starship_id,
            quantity=req.quantity,
            nickname=req.nickname,
            set_nickname="nickname" in req.model_fields_set,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DomainRuleError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/api/fleet/items/{starship_id}", status_code=204)
def api_fleet_remove(starship_id: int, request: Request, conn: sqlite3.Connection = Depends(get_db)) -> Response:
    user_id = require_user_id(conn, request)
    try:
        fleet_service.remove_item(conn, user_id, starship_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return Response(status_code=204)
