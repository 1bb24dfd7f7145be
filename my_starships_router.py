"""
User-owned starship routes (forks and from-scratch custom ships).

Every route is scoped to the caller; rows owned by someone else are reported
as 404, never 403.
"""

import sqlite3
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from auth_service import require_user_id
from catalog_router import starship_filters
from constants import MAX_SQLITE_INTEGER
from db import get_db
from errors import DomainRuleError, NotFoundError
import starship_service
from starship_service import StarshipFilters

router = APIRouter(tags=["my-starships"])


class MyStarshipReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    model: Optional[str] = None
    manufacturer: Optional[str] = None
    starship_class: Optional[str] = Field(default=None, alias="starshipClass")
    cost_in_credits: Optional[float] = Field(default=None, alias="costInCredits")
    length: Optional[float] = None
    crew: Optional[int] = Field(default=None, le=MAX_SQLITE_INTEGER)
    passengers: Optional[int] = Field(default=None, le=MAX_SQLITE_INTEGER)
    cargo_capacity: Optional[int] = Field(default=None, alias="cargoCapacity", le=MAX_SQLITE_INTEGER)
    hyperdrive_rating: Optional[float] = Field(default=None, alias="hyperdriveRating")
    mglt: Optional[int] = Field(default=None, alias="MGLT", le=MAX_SQLITE_INTEGER)
    max_atmosphering_speed: Optional[str] = Field(default=None, alias="maxAtmospheringSpeed")
    consumables: Optional[str] = None
    pilot_id: Optional[int] = Field(default=None, alias="pilotId", le=MAX_SQLITE_INTEGER)

    def fields(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"pilot_id"})


@router.get("/api/my-starships")
def api_my_starships(
    request: Request,
    filters: StarshipFilters = Depends(starship_filters),
    sort: Optional[str] = None,
    dir: Optional[str] = None,
    page: int = 1,
    page_size: int = Query(default=25, alias="pageSize"),
    conn: sqlite3.Connection = Depends(get_db),
) -> Dict[str, Any]:
    user_id = require_user_id(conn, request)
    return starship_service.list_custom_starships(
        conn, user_id, filters, sort=sort, direction=dir, page=page, page_size=page_size,
    )


@router.get("/api/my-starships/{starship_id}")
def api_my_starship(starship_id: int, request: Request, conn: sqlite3.Connection = Depends(get_db)) -> Dict[str, Any]:
    user_id = require_user_id(conn, request)
    try:
        return starship_service.get_custom_starship(conn, user_id, starship_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/api/my-starships", status_code=201)
def api_create_my_starship(req: MyStarshipReq, request: Request, conn: sqlite3.Connection = Depends(get_db)) -> Dict[str, Any]:
    user_id = require_user_id(conn, request)
    try:
        return starship_service.create_custom_starship(conn, user_id, req.fields(), req.pilot_id)
    except DomainRuleError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/api/my-starships/{starship_id}")
def api_update_my_starship(
    starship_id: int,
    req: MyStarshipReq,
    request: Request,
    conn: sqlite3.Connection = Depends(get_db),
) -> Dict[str, Any]:
    user_id = require_user_id(conn, request)
    try:
        return starship_service.update_custom_starship(conn, user_id, starship_id, req.fields(), req.pilot_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DomainRuleError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/api/my-starships/{starship_id}", status_code=204)
def api_delete_my_starship(starship_id: int, request: Request, conn: sqlite3.Connection = Depends(get_db)) -> Response:
    user_id = require_user_id(conn, request)
    try:
        starship_service.delete_custom_starship(conn, user_id, starship_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return Response(status_code=204)
