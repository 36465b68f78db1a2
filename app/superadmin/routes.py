from flask import Blueprint, jsonify

bp = Blueprint("routes", __name__)


@bp.get("/api/health")
def health():
    """Health check endpoint. Returns JSON."""
    return jsonify({"status": "OK", "message": "SuperAdmin API is running"})


@bp.get("/healthz")
def healthz():
    """
    Fast health check for load balancer probes. No DB access, minimal overhead.
    """
    return "ok", 200
