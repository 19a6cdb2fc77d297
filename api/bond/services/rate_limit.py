import hashlib
import logging
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request

from bond.auth.deps import SESSION_COOKIE_NAME
from bond.services.events import client_ip

logger = logging.getLogger(__name__)


@dataclass
class RateDecision:
    allowed: bool
    retry_after_seconds: int


class SlidingWindowLimiter:
    """Per-process sliding window. Each API worker keeps its own counters."""

    def __init__(self) -> None:
        self._events: dict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def check(self, key: str, limit: int, window_seconds: int) -> RateDecision:
        now = time.monotonic()
        cutoff = now - window_seconds
        with self._lock:
            dq = self._events[key]
            while dq and dq[0] <= cutoff:
                dq.popleft()
            if len(dq) >= limit:
                retry_after = max(1, int(dq[0] + window_seconds - now))
                return RateDecision(allowed=False, retry_after_seconds=retry_after)
            dq.append(now)
            return RateDecision(allowed=True, retry_after_seconds=0)

    def reset(self) -> None:
        with self._lock:
            self._events.clear()


limiter = SlidingWindowLimiter()


def _client_identifier(request: Request, per_session: bool = True) -> str:
    if not per_session:
        return f"ip:{client_ip(request)}"
    # Signed-in callers are limited per session, not per shared campus NAT address.
    session = request.cookies.get(SESSION_COOKIE_NAME, "")
    if not session:
        auth = request.headers.get("authorization", "").strip()
        if auth.lower().startswith("bearer "):
            session = auth[7:]
    if session:
        return "session:" + hashlib.sha256(session.encode("utf-8")).hexdigest()[:16]
    return f"ip:{client_ip(request)}"


def rate_limit_dependency(route_key: str, limit: int, window_seconds: int, *, per_session: bool = True):
    def _dep(request: Request) -> None:
        key = f"{route_key}:{_client_identifier(request, per_session)}"
        decision = limiter.check(key, limit=limit, window_seconds=window_seconds)
        if not decision.allowed:
            logger.warning("[rate_limit] denied route=%s retry_after=%s", route_key, decision.retry_after_seconds)
            raise HTTPException(
                status_code=429,
                detail=f"Too many requests. Retry in {decision.retry_after_seconds}s",
                headers={"Retry-After": str(decision.retry_after_seconds)},
            )

    return Depends(_dep)
