import logging
import os
from typing import Any, Dict

from fastapi import FastAPI

from admin_router import router as admin_router
from auth_router import router as auth_router
from auth_service import ensure_default_admin_account
from catalog_router import router as catalog_router
from db import connect_db
from db_migrations import apply_migrations
from fleet_router import router as fleet_router
from my_starships_router import router as my_starships_router
import swapi_client
import sync_service

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Starship Registry")
app.include_router(auth_router)
app.include_router(catalog_router)
app.include_router(my_starships_router)
app.include_router(fleet_router)
app.include_router(admin_router)


@app.on_event("startup")
def _startup():
    conn = connect_db()
    try:
        apply_migrations(conn)
        ensure_default_admin_account(conn)
        conn.commit()
        sync_service.bootstrap_catalog_if_empty(conn, swapi_client.build_feed_source)
    finally:
        conn.close()
    logger.info("Starship registry started (env=%s)", sync_service.APP_ENV)


@app.get("/")
def root() -> Dict[str, Any]:
    return {
        "service": "starship-registry",
        "docs": "/docs",
        "health": "/api/health",
    }
