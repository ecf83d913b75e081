from __future__ import annotations

import logging
from typing import Any

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Base error for service/API failures. Rendered as {"error": message}."""

    status_code = 500

    def __init__(self, message: str, *, extra: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}


class ValidationError(ApiError):
    status_code = 400

    def __init__(self, message: str | list[str], *, extra: dict[str, Any] | None = None):
        errors = [message] if isinstance(message, str) else list(message)
        super().__init__("; ".join(errors), extra=extra)
        self.errors = errors


class InvalidCode(ValidationError):
    pass


class AuthenticationRequired(ApiError):
    status_code = 401


class Forbidden(ApiError):
    status_code = 403


class NotFound(ApiError):
    status_code = 404


class Conflict(ApiError):
    status_code = 409


class RateLimited(ApiError):
    status_code = 429


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):  # type: ignore[no-redef]
        if e.status_code >= 500:
            app.logger.exception("API error (request_id=%s)", getattr(g, "request_id", None))
        body: dict[str, Any] = {"error": e.message}
        if isinstance(e, ValidationError) and len(e.errors) > 1:
            body["errors"] = e.errors
        body.update(e.extra)
        return jsonify(body), e.status_code

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):  # type: ignore[no-redef]
        if e.code == 413:
            max_mb = (app.config.get("MAX_CONTENT_LENGTH") or 0) // (1024 * 1024)
            return jsonify({"error": f"File too large. Maximum size is {max_mb}MB."}), 413
        if e.code == 403:
            logger.warning("Forbidden: path=%s request_id=%s", request.path, getattr(g, "request_id", None))
        return jsonify({"error": e.description or e.name}), e.code

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "Internal server error"}), 500
