# database.py
"""
Database connection setup using SQLAlchemy.

Loads DATABASE_URL from the environment (or a local .env), creates the
SQLAlchemy engine and session factory, provides the declarative Base
for models, and defines the `get_db` dependency for FastAPI routes.
"""

import os
import logging
from urllib.parse import urlparse # For safe URL logging

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from dotenv import load_dotenv

log = logging.getLogger(__name__)

# --- Environment Variable Loading ---
dotenv_path = os.path.join(os.path.dirname(__file__), '.env')

if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path=dotenv_path)
    log.info(f"Loaded environment variables from: {dotenv_path}")
else:
    log.debug(f".env file not found at: {dotenv_path}. Relying on OS environment variables.")

# --- Database URL Configuration ---
DATABASE_URL = os.getenv("DATABASE_URL")
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", 10))

if not DATABASE_URL:
    log.critical("FATAL ERROR: DATABASE_URL environment variable is not set.")
    raise ValueError("DATABASE_URL environment variable is required but not found.")


def mask_database_url(url: str) -> str:
    """Returns the URL with its password replaced by '***'."""
    parsed_url = urlparse(url)
    if not parsed_url.hostname:
        return f"{parsed_url.scheme}://{parsed_url.path}"
    safe_url = f"{parsed_url.scheme}://{parsed_url.username}:***@{parsed_url.hostname}"
    if parsed_url.port:
        safe_url += f":{parsed_url.port}"
    safe_url += parsed_url.path
    if parsed_url.query:
        safe_url += f"?{parsed_url.query}"
    return safe_url


try:
    log.info(f"Database URL loaded (Password Masked): {mask_database_url(DATABASE_URL)}")
except ValueError as parse_error:
    log.error(f"Could not parse DATABASE_URL for safe logging: {parse_error}")


# --- SQLAlchemy Engine Creation ---
def _engine_options(url: str) -> dict:
    # SQLite is only used for local runs and tests; one shared connection keeps
    # an in-memory database alive across sessions.
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {"pool_size": DB_POOL_SIZE, "max_overflow": 0, "pool_pre_ping": True}


try:
    engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))
    log.info("SQLAlchemy engine created successfully.")
except Exception as engine_error:
    log.critical(f"FATAL ERROR: Failed to create SQLAlchemy engine: {engine_error}", exc_info=True)
    raise RuntimeError(f"Could not create database engine: {engine_error}") from engine_error


# --- SQLAlchemy Session Factory ---
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

# --- SQLAlchemy Declarative Base ---
Base = declarative_base()


# --- FastAPI Dependency for Database Sessions ---
def get_db():
    """
    FastAPI dependency that provides a SQLAlchemy database session.

    Creates a new session for each request, yields it to the endpoint,
    and ensures it's closed afterwards, even if errors occur.
    """
    db = SessionLocal()
    log.debug(f"Database session created: {db}")
    try:
        yield db
    finally:
        log.debug(f"Closing database session: {db}")
        db.close()
