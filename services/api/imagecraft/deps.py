# services/api/imagecraft/deps.py

import uuid
from typing import Callable, Optional

import httpx
from fastapi import Request

from .config import settings

HttpClientFactory = Callable[[], httpx.AsyncClient]

def get_http_client_factory() -> HttpClientFactory:
    """
    Outbound HTTP (size probes, download proxy). Routes own the client's
    lifetime because the download proxy keeps it open while streaming.
    """
    def _make() -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=settings.PROBE_TIMEOUT_SEC, follow_redirects=True)
    return _make

def session_id_from_request(request: Request) -> Optional[str]:
    sid = request.headers.get("X-Session-Id") or request.cookies.get(settings.SESSION_COOKIE_NAME)
    if sid and 8 <= len(sid) <= 128:
        return sid
    return None

def new_session_id() -> str:
    return uuid.uuid4().hex
