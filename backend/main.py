# backend/main.py
# FarmFi API: farmers register fields and crops, employees verify, admins approve.

import logging
import os
from datetime import datetime, timezone

from fastapi import FastAPI, Depends, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text

# --- Basic Logging Configuration ---
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
log = logging.getLogger(__name__)

# --- Project Imports ---
from database import get_db, engine
import models
from routers import admin, analytics, auth, crops, farmers, field_images, fields, reference

# --- Create DB Tables (on startup) ---
try:
    log.info("Attempting to create database tables if they don't exist...")
    models.Base.metadata.create_all(bind=engine)
    log.info("Database tables checked/created successfully.")
except SQLAlchemyError as e:
    log.critical(f"FATAL: Error creating database tables: {e}", exc_info=True)
    raise SystemExit("Database table creation failed, cannot start.")

# --- FastAPI Application Setup ---
app = FastAPI(
    title="FarmFi API",
    description="Field and crop registration with employee verification, admin approval, land-utilization checks and leaf disease detection.",
    version="1.0.0"
)

# --- CORS ---
DEFAULT_ORIGINS = "http://localhost:3000,http://localhost:5173"


def _parse_origins(raw: str):
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


allowed_origins = _parse_origins(os.getenv("ALLOWED_ORIGINS", "")) or _parse_origins(DEFAULT_ORIGINS)
log.info(f"CORS origins: {allowed_origins}")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error Handling ---
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    log.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc) or "Internal server error"},
    )


# --- Routers ---
app.include_router(auth.router)
app.include_router(reference.router)
app.include_router(farmers.router)
app.include_router(fields.router)
app.include_router(crops.router)
app.include_router(field_images.router)
app.include_router(analytics.router)
app.include_router(analytics.admin_router)
app.include_router(admin.router)


# --- Health Check ---
@app.get("/health", tags=["System"], status_code=status.HTTP_200_OK)
async def health_check(db: Session = Depends(get_db)):
    """Reports service status and whether the database answers."""
    try:
        db.execute(text("SELECT 1"))
        db_state = "ok"
    except SQLAlchemyError as e:
        log.error(f"Health check could not reach the database: {e}")
        db_state = "failed"
    return {
        "status": "healthy" if db_state == "ok" else "unhealthy",
        "db_connection": db_state,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 5000))
    host = os.getenv("HOST", "0.0.0.0")
    reload_flag = os.getenv("UVICORN_RELOAD", "false").lower() == "true"
    log_level = os.getenv("UVICORN_LOG_LEVEL", "info").lower()

    log.info(f"Starting FarmFi API on http://{host}:{port} (reload={reload_flag}, log_level={log_level})")
    uvicorn.run("main:app", host=host, port=port, reload=reload_flag, log_level=log_level)
