import hmac
import secrets

from flask import Request, session

CSRF_SESSION_KEY = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"


def ensure_csrf_token() -> str:
    """Per-session CSRF token; minted on first use and returned by login/visitor/csrf endpoints."""
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = session[CSRF_SESSION_KEY] = secrets.token_urlsafe(32)
    return token


def _submitted_token(req: Request) -> str | None:
    # SPA clients send the header; plain form posts (uploads) may send a field instead.
    token = req.headers.get(CSRF_HEADER) or req.form.get(CSRF_SESSION_KEY)
    if token:
        return token
    body = req.get_json(silent=True) if req.is_json else None
    return body.get(CSRF_SESSION_KEY) if isinstance(body, dict) else None


def validate_csrf(req: Request) -> bool:
    return codes_match(_submitted_token(req), session.get(CSRF_SESSION_KEY))


def codes_match(provided: str | None, expected: str | None) -> bool:
    """Constant-time comparison for CSRF tokens, access codes and other shared secrets."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(str(provided).strip().encode("utf-8"), str(expected).strip().encode("utf-8"))
