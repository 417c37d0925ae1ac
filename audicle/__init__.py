import logging
import os
import time
from typing import Any, Mapping, Optional

import flask_limiter
import structlog
from dotenv import load_dotenv
from flask import Flask, g, request
from flask_cors import CORS

from audicle.config import load_settings
from audicle.extensions import client_scope, limiter
from audicle.services.audio_store import AudioStore
from audicle.services.credentials import CredentialStore
from audicle.services.extraction import RequestGenerations
from audicle.utils.correlation import (
    bind_request_context,
    clear_correlation_context,
    ensure_correlation_id,
)
from audicle.utils.logging_config import setup_logging


class AudicleServices:
    """Process-wide collaborators shared by the request handlers."""

    def __init__(self, credentials: CredentialStore, audio_store: AudioStore) -> None:
        self.credentials = credentials
        self.audio_store = audio_store
        self.generations = RequestGenerations()


def _default_origins(env_name: str, configured: list[str]) -> list[str]:
    origins = list(configured)
    for local in ("http://localhost:5000", "http://127.0.0.1:5000"):
        if local not in origins:
            origins.append(local)
    if env_name != "production" and "http://localhost:5173" not in origins:
        origins.append("http://localhost:5173")
    return origins


def _register_request_hooks(app: Flask) -> None:
    log = structlog.get_logger("audicle.http")

    @app.before_request
    def bind_correlation():
        g.request_started = time.perf_counter()
        ensure_correlation_id(request.headers.get("X-Correlation-ID"))
        bind_request_context(path=request.path, client_id=client_scope())
        log.info(event="http.request", method=request.method)

    @app.after_request
    def log_response(response):
        started = getattr(g, "request_started", None)
        elapsed_ms = int((time.perf_counter() - started) * 1000) if started else None
        log.info(
            event="http.response",
            status_code=response.status_code,
            elapsed_ms=elapsed_ms,
        )
        correlation_id = getattr(g, "correlation_id", None)
        if correlation_id:
            response.headers.setdefault("X-Correlation-ID", correlation_id)
        return response

    @app.teardown_request
    def clear_context(_exc=None):
        clear_correlation_context()


def create_app(overrides: Optional[Mapping[str, Any]] = None):
    """Create and configure an instance of the Flask application."""
    load_dotenv()

    setup_logging()
    logger = logging.getLogger(__name__)

    settings = load_settings()
    env_name = settings.ENV.strip().lower()

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_mapping(
        ENV=env_name,
        SECRET_KEY=settings.SECRET_KEY,
        INSTANCE_DIR=settings.INSTANCE_DIR or app.instance_path,
        RATELIMIT_DEFAULT=settings.RATELIMIT_DEFAULT,
        RATELIMIT_CONVERSIONS=settings.RATELIMIT_CONVERSIONS,
        RATELIMIT_STORAGE_URI=settings.RATELIMIT_STORAGE_URI,
        RATELIMIT_HEADERS_ENABLED=True,
    )
    if overrides:
        app.config.update(overrides)

    if env_name == "production" and app.config["SECRET_KEY"] == "dev":
        logger.warning("SECRET_KEY is the development default in production.")

    instance_dir = app.config["INSTANCE_DIR"]
    os.makedirs(instance_dir, exist_ok=True)
    audio_dir = app.config.get("AUDIO_STORE_DIR") or os.getenv(
        "AUDIO_STORE_DIR", os.path.join(instance_dir, "audio")
    )
    credentials_path = app.config.get("CREDENTIALS_PATH") or os.getenv(
        "CREDENTIALS_PATH", os.path.join(instance_dir, "credentials.json")
    )

    app.extensions["audicle"] = AudicleServices(
        credentials=CredentialStore(credentials_path).load(),
        audio_store=AudioStore(audio_dir),
    )

    logger.info("Flask-Limiter version: %s", getattr(flask_limiter, "__version__", "0"))
    limiter.init_app(app)

    app.config["ALLOWED_ORIGINS"] = _default_origins(env_name, settings.allowed_origins)
    CORS(
        app,
        origins=app.config["ALLOWED_ORIGINS"],
        expose_headers=["X-Correlation-ID"],
        allow_headers=["Content-Type", "X-Client-Id", "X-Correlation-ID"],
    )

    _register_request_hooks(app)

    from .routes import api

    if "api" not in app.blueprints:
        app.register_blueprint(api.bp)

    logger.info("Application starting (ENV=%s, instance=%s)", env_name, instance_dir)
    return app
