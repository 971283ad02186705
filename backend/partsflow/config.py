# backend/partsflow/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/partsflow.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///partsflow.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Workshop used when a caller does not name one
    DEFAULT_WORKSHOP = os.environ.get("DEFAULT_WORKSHOP", "MAIN")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Attempts for run_with_retry on lock/stale-row failures
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
    # First backoff delay in seconds; doubles on each further attempt
    DB_RETRY_BACKOFF = float(os.environ.get("DB_RETRY_BACKOFF", "0.1"))
