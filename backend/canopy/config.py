# backend/canopy/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/canopy.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///canopy.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Registry (seed-to-sale tracking system) connectivity.
    # Every registry call is bounded by this timeout; there is no internal retry.
    REGISTRY_TIMEOUT_SECONDS = float(os.environ.get("REGISTRY_TIMEOUT_SECONDS", "30"))
    REGISTRY_BASE_URL_TEMPLATE = os.environ.get(
        "REGISTRY_BASE_URL_TEMPLATE",
        "https://api-{state}.metrc.com",
    )
    REGISTRY_SANDBOX_BASE_URL_TEMPLATE = os.environ.get(
        "REGISTRY_SANDBOX_BASE_URL_TEMPLATE",
        "https://sandbox-api-{state}.metrc.com",
    )

    # Forces sandbox endpoints for every credential (dev/staging)
    REGISTRY_TEST_MODE = os.environ.get("REGISTRY_TEST_MODE", "").lower() in ("1", "true", "yes")
    REGISTRY_TEST_STATE = os.environ.get("REGISTRY_TEST_STATE", "AK")

    # Vendor keys are per integrator, optionally per state (REGISTRY_VENDOR_KEY_<STATE>)
    REGISTRY_VENDOR_KEY = os.environ.get("REGISTRY_VENDOR_KEY")

    # Browser origins allowed to call the API (comma separated)
    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    ]
