from flask import Blueprint, jsonify

from app.community.constants import SETTING_DONATION_URL
from app.community.db import db_session

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for container probes. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.get("/api/settings/donation-url")
def donation_url():
    from app.community.admin import get_setting

    return jsonify({"url": get_setting(db_session(), SETTING_DONATION_URL)})
