# backend/tillcore/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.environ.get(name) or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file in the instance folder unless DATABASE_URL points elsewhere
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///tillcore.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Writers queue on the SQLite lock instead of failing immediately
    SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30}} if SQLALCHEMY_DATABASE_URI.startswith("sqlite") else {}

    # Sales may not drive stock below zero unless explicitly allowed
    ALLOW_NEGATIVE_STOCK = _env_bool("ALLOW_NEGATIVE_STOCK", False)

    # Bulk product import
    IMPORT_MAX_ROWS = int(os.environ.get("IMPORT_MAX_ROWS", "500"))
    IMPORT_IMAGE_CONCURRENCY = int(os.environ.get("IMPORT_IMAGE_CONCURRENCY", "5"))
    IMPORT_IMAGE_TIMEOUT_SECONDS = float(os.environ.get("IMPORT_IMAGE_TIMEOUT_SECONDS", "10"))
    IMPORT_IMAGE_MAX_BYTES = int(os.environ.get("IMPORT_IMAGE_MAX_BYTES", str(5 * 1024 * 1024)))
    IMPORT_IMAGE_PREFIX = os.environ.get("IMPORT_IMAGE_PREFIX", "products")

    # Object storage for re-hosted product images (S3 / MinIO compatible)
    S3_ENDPOINT_URL = os.environ.get("S3_ENDPOINT_URL")
    S3_ACCESS_KEY_ID = os.environ.get("S3_ACCESS_KEY_ID")
    S3_SECRET_ACCESS_KEY = os.environ.get("S3_SECRET_ACCESS_KEY")
    S3_BUCKET = os.environ.get("S3_BUCKET")
    S3_REGION = os.environ.get("S3_REGION", "us-east-1")
    S3_USE_SSL = _env_bool("S3_USE_SSL", True)
    S3_PUBLIC_BASE_URL = os.environ.get("S3_PUBLIC_BASE_URL")
