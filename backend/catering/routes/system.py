# backend/catering/routes/system.py
"""
System health endpoint.
"""

import time
from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from ..extensions import db
from catering.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "response_time_ms": round(elapsed_ms, 2)}
    except Exception as e:
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "error": str(e)}


@system_bp.get("/health")
def health():
    database = check_database_health()
    status = "healthy" if database["status"] == "healthy" else "unhealthy"
    return jsonify({
        "status": status,
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }), (200 if status == "healthy" else 503)
