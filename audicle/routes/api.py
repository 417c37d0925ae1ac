from __future__ import annotations

from typing import Any

import structlog
from flask import Blueprint, abort, current_app, jsonify, request, send_file

from audicle.extensions import client_scope, limiter
from audicle.services import pipeline
from audicle.services.exceptions import (
    AllProvidersFailed,
    AudicleError,
    InvalidUrl,
    MissingCredential,
    RemoteServiceError,
    RequestSuperseded,
)
from audicle.services.extraction import extract_article
from audicle.utils.correlation import bind_request_context

logger = structlog.get_logger(__name__)

bp = Blueprint("api", __name__)

_STATUS_BY_ERROR: tuple[tuple[type[AudicleError], int], ...] = (
    (InvalidUrl, 400),
    (MissingCredential, 400),
    (AllProvidersFailed, 422),
    (RequestSuperseded, 409),
    (RemoteServiceError, 502),
)


def _services():
    return current_app.extensions["audicle"]


def _conversion_limit() -> str:
    return current_app.config["RATELIMIT_CONVERSIONS"]


def _json_body() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _error_response(error_type: str, message: str, status_code: int):
    return jsonify({"error": {"type": error_type, "message": message}}), status_code


@bp.errorhandler(AudicleError)
def handle_audicle_error(exc: AudicleError):
    status_code = next(
        (code for error_cls, code in _STATUS_BY_ERROR if isinstance(exc, error_cls)), 500
    )
    if isinstance(exc, AllProvidersFailed):
        logger.warning(
            event="api.extraction_failed",
            url=exc.url,
            causes=[cause.to_dict() for cause in exc.causes],
        )
    elif status_code >= 500:
        logger.error(
            event="api.error",
            error_type=exc.__class__.__name__,
            error=str(exc),
        )
    else:
        logger.info(
            event="api.rejected",
            error_type=exc.__class__.__name__,
            error=str(exc),
        )
    return _error_response(exc.__class__.__name__, exc.user_message, status_code)


@bp.route("/api/articles/extract", methods=["POST"])
@limiter.limit(_conversion_limit)
def extract():
    url = str(_json_body().get("url") or "")
    bind_request_context(url=url)
    article = extract_article(url)
    return jsonify(article.to_dict())


@bp.route("/api/conversions", methods=["POST"])
@limiter.limit(_conversion_limit)
def create_conversion():
    body = _json_body()
    url = str(body.get("url") or "")
    bind_request_context(url=url)
    services = _services()
    result = pipeline.convert_article(
        url,
        owner=client_scope(),
        summarize=bool(body.get("summarize", False)),
        credentials=services.credentials,
        store=services.audio_store,
        generations=services.generations,
    )
    return jsonify(result.to_dict()), 201


@bp.route("/api/conversions/current", methods=["DELETE"])
def reset_conversion():
    services = _services()
    owner = client_scope()
    # Also stops any conversion still in flight for this owner.
    released = services.generations.supersede(
        owner, lambda: services.audio_store.reset(owner)
    )
    return jsonify({"released": released, "status": "idle"})


@bp.route("/api/keys", methods=["GET"])
def get_keys():
    return jsonify(_services().credentials.masked())


@bp.route("/api/keys", methods=["PUT"])
def put_keys():
    body = _json_body()
    values: dict[str, Any] = {}
    for field in ("elevenlabs", "openai"):
        value = body.get(field)
        if value is not None and not isinstance(value, str):
            return _error_response(
                "ValidationError", f"'{field}' must be a string.", 400
            )
        values[field] = value
    credentials = _services().credentials
    credentials.save(elevenlabs=values["elevenlabs"], openai=values["openai"])
    return jsonify(credentials.masked())


@bp.route("/audio/<audio_id>")
@limiter.exempt
def stream_audio(audio_id: str):
    store = _services().audio_store
    record = store.get(audio_id)
    path = store.path_for(audio_id)
    if record is None or path is None:
        abort(404)
    return send_file(
        path,
        mimetype=record.content_type,
        conditional=True,
        max_age=0,
    )


@bp.route("/healthz")
@limiter.exempt
def healthz():
    """Lightweight liveness probe."""
    return "ok", 200
