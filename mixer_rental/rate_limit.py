"""Rate limiting singleton using slowapi.

Only the manual notification triggers are limited; each operator (X-Actor
header) behind each client address gets its own bucket.
"""

from fastapi import Request
from slowapi import Limiter

from .audit.service import ACTOR_HEADER


def _client_key(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = request.client.host if request.client else "unknown"
    actor = (request.headers.get(ACTOR_HEADER) or "").strip()
    return f"{actor}@{ip}" if actor else ip


limiter = Limiter(key_func=_client_key)
