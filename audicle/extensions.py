from __future__ import annotations

from flask import request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address


def client_scope() -> str:
    """Per-client key: the browser's ``X-Client-Id`` header, else the remote address."""
    header = (request.headers.get("X-Client-Id") or "").strip()
    return header[:128] or get_remote_address()


limiter = Limiter(key_func=client_scope)
