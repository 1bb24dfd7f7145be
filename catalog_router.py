"""
Starship catalog API routes.

Handles:
  /api/health
  /api/starships
  /api/starships/filters
  /api/starships/{starship_id}
  /api/starships/{starship_id}/fork
"""

import sqlite3
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from auth_service import require_user_id
from constants import MAX_SQLITE_INTEGER
from db import get_db
from errors import DomainRuleError, ForbiddenError, NotFoundError
import starship_service
from starship_service import StarshipFilters

router = APIRouter(tags=["catalog"])


class ForkReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    add_to_fleet: bool = Field(default=False, alias="addToFleet")


def starship_filters(
    search: Optional[str] = None,
    starship_class: Optional[str] = Query(default=None, alias="class"),
    manufacturer: Optional[str] = None,
    min_cost: Optional[float] = Query(default=None, alias="minCost"),
    max_cost: Optional[float] = Query(default=None, alias="maxCost"),
    min_length: Optional[float] = Query(default=None, alias="minLength"),
    max_length: Optional[float] = Query(default=None, alias="maxLength"),
    min_crew: Optional[int] = Query(default=None, alias="minCrew", ge=0, le=MAX_SQLITE_INTEGER),
    max_crew: Optional[int] = Query(default=None, alias="maxCrew", ge=0, le=MAX_SQLITE_INTEGER),
    min_passengers: Optional[int] = Query(default=None, alias="minPassengers", ge=0, le=MAX_SQLITE_INTEGER),
    max_passengers: Optional[int] = Query(default=None, alias="maxPassengers", ge=0, le=MAX_SQLITE_INTEGER),
    min_cargo: Optional[int] = Query(default=None, alias="minCargoCapacity", ge=0, le=MAX_SQLITE_INTEGER),
    max_cargo: Optional[int] = Query(default=None, alias="maxCargoCapacity", ge=0, le=MAX_SQLITE_INTEGER),
) -> StarshipFilters:
    """Shared query-string filters for catalog, custom ship and fleet listings."""
    return StarshipFilters(
        search=search,
        starship_class=starship_class,
        manufacturer=manufacturer,
        min_cost=min_cost,
        max_cost=max_cost,
        min_length=min_length,
        max_length=max_length,
        min_crew=min_crew,
        max_crew=max_crew,
        min_passengers=min_passengers,
        max_passengers=max_passengers,
        min_cargo=min_cargo,
        max_cargo=max_cargo,
    )


@router.get("/api/health")
def api_health(conn: sqlite3.Connection = Depends(get_db)) -> Dict[str, Any]:
    row = conn.execute(
        "SELECT COUNT(*) AS n FROM starships WHERE is_catalog=1 AND is_active=1"
    ).fetchone()
    return {
        "ok": True,
        "service": "starship-registry",
        "catalog_starships": int(row["n"]),
    }


@router.get("/api/starships")
def api_starships(
    filters: StarshipFilters = Depends(starship_filters),
    sort: Optional[str] = None,
    dir: Optional[str] = None,
    page: int = 1,
    page_size: int = Query(default=20, alias="pageSize"),
    conn: sqlite3.Connection = Depends(get_db),
) -> Dict[str, Any]:
    return starship_service.list_catalog_starships(
        conn, filters, sort=sort, direction=dir, page=page, page_size=page_size,
    )


@router.get("/api/starships/filters")
def api_starship_filters(conn: sqlite3.Connection = Depends(get_db)) -> Dict[str, Any]:
    return starship_service.catalog_filter_options(conn)


@router.get("/api/starships/{starship_id}")
def api_starship_detail(starship_id: int, conn: sqlite3.Connection = Depends(get_db)) -> Dict[str, Any]:
    try:
        return starship_service.get_catalog_starship(conn, starship_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/api/starships/{starship_id}/fork")
def api_fork_starship(
    starship_id: int,
    request: Request,
    response: Response,
    req: Optional[ForkReq] = None,
    conn: sqlite3.Connection = Depends(get_db),
) -> Dict[str, Any]:
    user_id = require_user_id(conn, request)
    body = req or ForkReq()
    try:
        result = starship_service.fork_starship(
            conn, user_id, starship_id, name=body.name, add_to_fleet=body.add_to_fleet,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ForbiddenError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except DomainRuleError as e:
        raise HTTPException(status_code=400, detail=str(e))

    response.status_code = 201 if result["created"] else 200
    return {"id": result["id"], "baseStarshipId": result["baseStarshipId"]}
