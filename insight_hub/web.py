"""Flask application exposing the push callback and the trigger endpoints."""

from __future__ import annotations

import hmac
from functools import wraps
from typing import Any

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from .errors import NotFoundError, PayloadTooLargeError, ValidationError
from .logging_conf import component_logger
from .orchestrator import Orchestrator

logger = component_logger("web")


def create_app(orchestrator: Orchestrator, api_key: str | None = None) -> Flask:
    """Build the Flask app around an already-wired orchestrator."""

    app = Flask(__name__)
    app.config["JSON_SORT_KEYS"] = False
    config = orchestrator.config
    # Werkzeug enforces the bound while reading, which covers chunked bodies.
    app.config["MAX_CONTENT_LENGTH"] = config.push.max_payload_bytes
    callback_path = config.push.callback_path
    callback_token = config.secret(config.push.callback_token_env)
    if api_key is None:
        api_key = config.secret(config.server.api_key_env)

    def require_api_key(f):
        """Decorator guarding mutating triggers with the X-API-Key header."""

        @wraps(f)
        def decorated_function(*args, **kwargs):
            provided = request.headers.get("X-API-Key", "")
            if not api_key or not hmac.compare_digest(provided.encode(), api_key.encode()):
                return jsonify({"error": "Unauthorized. Invalid or missing API key."}), 401
            return f(*args, **kwargs)

        return decorated_function

    def check_token(token: str | None) -> None:
        if (token or None) != callback_token:
            raise NotFoundError("Unknown callback path")

    # ------------------------------------------------------------------
    # Hub callback
    # ------------------------------------------------------------------
    def callback_get(token: str | None = None):
        check_token(token)
        args = request.args
        challenge = orchestrator.push.verify(
            args.get("hub.mode"),
            args.get("hub.topic"),
            args.get("hub.challenge"),
            lease_seconds=args.get("hub.lease_seconds"),
            callback_url=request.base_url,
        )
        return Response(challenge, status=200, mimetype="text/plain")

    def callback_post(token: str | None = None):
        check_token(token)
        limit = config.push.max_payload_bytes
        if request.content_length is not None and request.content_length > limit:
            raise PayloadTooLargeError(request.content_length, limit)
        payload = request.get_data(cache=False)
        report = orchestrator.push.ingest(payload, signature=request.headers.get("X-Hub-Signature"))
        return jsonify(report.to_dict())

    app.add_url_rule(callback_path, "callback_get", callback_get, methods=["GET"])
    app.add_url_rule(callback_path, "callback_post", callback_post, methods=["POST"])
    app.add_url_rule(f"{callback_path}/<token>", "callback_get_token", callback_get, methods=["GET"])
    app.add_url_rule(f"{callback_path}/<token>", "callback_post_token", callback_post, methods=["POST"])

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------
    @app.route("/api/poll", methods=["POST"])
    @require_api_key
    def trigger_poll():
        body = _json_body()
        report = orchestrator.poll(
            channel_ids=_channel_ids(body), max_results=_int_field(body, "maxResults", minimum=1)
        )
        return jsonify(report.to_dict())

    @app.route("/api/jobs/process", methods=["POST"])
    @require_api_key
    def trigger_jobs():
        body = _json_body()
        report = orchestrator.process_jobs(_int_field(body, "limit", minimum=1))
        return jsonify(report.to_dict())

    @app.route("/api/websub/subscribe", methods=["POST"])
    @require_api_key
    def trigger_subscribe():
        body = _json_body()
        results = orchestrator.subscribe(_channel_ids(body))
        return jsonify({"results": [result.to_dict() for result in results]})

    @app.route("/api/websub/resubscribe", methods=["POST"])
    @require_api_key
    def trigger_resubscribe():
        body = _json_body()
        results = orchestrator.resubscribe(
            _channel_ids(body), within_seconds=_int_field(body, "withinSeconds", minimum=0)
        )
        return jsonify({"results": [result.to_dict() for result in results]})

    @app.route("/healthz", methods=["GET"])
    def healthz():
        return jsonify({"status": "ok"})

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------
    @app.errorhandler(PayloadTooLargeError)
    def payload_too_large(error):
        return jsonify({"error": str(error)}), 413

    @app.errorhandler(RequestEntityTooLarge)
    def body_too_large(error):
        limit = app.config["MAX_CONTENT_LENGTH"]
        return jsonify({"error": f"Payload exceeds limit of {limit} bytes"}), 413

    @app.errorhandler(ValidationError)
    def bad_request(error):
        return jsonify({"error": str(error)}), 400

    @app.errorhandler(NotFoundError)
    def not_found(error):
        return jsonify({"error": str(error)}), 404

    @app.errorhandler(Exception)
    def internal_error(error):
        if isinstance(error, HTTPException):
            return error
        logger.error("unhandled_error", path=request.path, error=str(error), exc_info=True)
        return jsonify({"error": "Internal server error"}), 500

    return app


def _json_body() -> dict[str, Any]:
    if not request.get_data(cache=True):
        return {}
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _channel_ids(body: dict[str, Any]) -> list[str] | None:
    value = body.get("channelIds")
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError("channelIds must be a list of strings")
    # An empty list means every channel, matching an omitted field.
    return value or None


def _int_field(body: dict[str, Any], key: str, minimum: int) -> int | None:
    value = body.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValidationError(f"{key} must be an integer >= {minimum}")
    return value


__all__ = ["create_app"]
