# backend/catering/config.py
from __future__ import annotations
import os


def _csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/catering.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///catering.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Identity provider tokens (verified, never trusted for role)
    IDENTITY_TOKEN_SECRET = os.environ.get("IDENTITY_TOKEN_SECRET", "dev-identity-secret-change-me")
    IDENTITY_TOKEN_ALGORITHMS = _csv(os.environ.get("IDENTITY_TOKEN_ALGORITHMS", "HS256"))
    IDENTITY_TOKEN_AUDIENCE = os.environ.get("IDENTITY_TOKEN_AUDIENCE") or None
    IDENTITY_TOKEN_ISSUER = os.environ.get("IDENTITY_TOKEN_ISSUER") or None

    # Attachments
    ATTACHMENT_MAX_BYTES = int(os.environ.get("ATTACHMENT_MAX_BYTES", str(10 * 1024 * 1024)))
    ATTACHMENT_ALLOWED_MIME_TYPES = _csv(os.environ.get(
        "ATTACHMENT_ALLOWED_MIME_TYPES",
        ",".join([
            "image/jpeg",
            "image/png",
            "image/gif",
            "application/pdf",
            "application/msword",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            "application/vnd.ms-excel",
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            "text/plain",
        ]),
    ))
    UPLOAD_DIR = os.environ.get("UPLOAD_DIR", "uploads")
    UPLOAD_URL_PREFIX = os.environ.get("UPLOAD_URL_PREFIX", "/uploads")

    # Workflow policy
    ALLOW_SELF_APPROVAL = os.environ.get("ALLOW_SELF_APPROVAL", "false").lower() == "true"
    NOTIFICATION_RETENTION_DAYS = int(os.environ.get("NOTIFICATION_RETENTION_DAYS", "30"))

    CORS_ALLOWED_ORIGINS = set(_csv(os.environ.get(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
    )))


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    IDENTITY_TOKEN_SECRET = "test-identity-secret"
    IDENTITY_TOKEN_AUDIENCE = None
    IDENTITY_TOKEN_ISSUER = None
    ALLOW_SELF_APPROVAL = False
