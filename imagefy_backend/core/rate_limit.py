"""Fixed-window in-memory rate limiting middleware.

Only the code-redemption endpoint is limited: a small number of attempts per
client address per window blunts brute-force guessing of lifetime codes.
Counters live in process memory, so a restart resets them.
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from imagefy_backend.core.errors import RateLimitError, app_error_handler
from imagefy_backend.core.logging import get_request_id, log_event


PREFIX_MAP: Dict[str, List[str]] = {
    "redeem": ["/verify-code"],
}


@dataclass(frozen=True)
class WindowPolicy:
    limit: int
    window_seconds: int


def _parse_limit(value) -> Optional[int]:
    if value is None:
        return None
    try:
        limit = int(value)
        return limit if limit > 0 else None
    except (TypeError, ValueError):
        return None


class FixedWindowLimiter:
    def __init__(self, limit: int, window_seconds: int, time_fn: Callable[[], float]):
        self.limit = limit
        self.window_seconds = window_seconds
        self.time_fn = time_fn
        self.windows: Dict[str, Tuple[float, int]] = {}
        self._last_sweep = time_fn()

    def _sweep(self, now: float) -> None:
        """Forget keys whose window has run out, at most once per window."""
        if now - self._last_sweep < self.window_seconds:
            return
        self.windows = {
            key: (start, count)
            for key, (start, count) in self.windows.items()
            if now - start < self.window_seconds
        }
        self._last_sweep = now

    def allow(self, key: str) -> bool:
        now = self.time_fn()
        self._sweep(now)
        window_start, count = self.windows.get(key, (now, 0))
        if now - window_start >= self.window_seconds:
            window_start, count = now, 0
        if count >= self.limit:
            self.windows[key] = (window_start, count)
            return False
        self.windows[key] = (window_start, count + 1)
        return True

    def retry_after(self, key: str) -> int:
        window_start, _ = self.windows.get(key, (self.time_fn(), 0))
        remaining = self.window_seconds - (self.time_fn() - window_start)
        return max(1, int(remaining))


def client_address(request: Request, trust_forwarded_for: bool = False) -> str:
    """
    Peer address of the request.

    X-Forwarded-For is client-controlled, so its first hop is only used when
    a proxy in front of the service is known to overwrite it.
    """
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        policies: Dict[str, Optional[WindowPolicy]],
        time_fn: Optional[Callable[[], float]] = None,
        trust_forwarded_for: bool = False,
    ):
        super().__init__(app)
        self.trust_forwarded_for = trust_forwarded_for
        self.time_fn = time_fn or time.monotonic
        self.limiters: Dict[str, FixedWindowLimiter] = {}
        for name, policy in policies.items():
            if policy:
                self.limiters[name] = FixedWindowLimiter(policy.limit, policy.window_seconds, self.time_fn)

    def _category_for_path(self, path: str) -> Optional[str]:
        for category, prefixes in PREFIX_MAP.items():
            if any(path.startswith(prefix) for prefix in prefixes):
                return category
        return None

    async def dispatch(self, request: Request, call_next):
        category = self._category_for_path(request.url.path)
        limiter = self.limiters.get(category)

        # Fail-open when limit not configured or category not matched
        if not limiter:
            return await call_next(request)

        key = f"{category}:{client_address(request, self.trust_forwarded_for)}"
        if not limiter.allow(key):
            rid = getattr(request.state, "request_id", None) or get_request_id()
            log_event(
                "warning",
                "ratelimit.blocked",
                request_id=rid,
                error_code="rate_limited",
                extra={"path": request.url.path, "category": category},
            )
            response = await app_error_handler(
                request,
                RateLimitError("Too many attempts. Please try again later.", request_id=rid),
            )
            response.headers["Retry-After"] = str(limiter.retry_after(key))
            response.headers["X-RateLimit-Limit"] = str(limiter.limit)
            response.headers["X-RateLimit-Remaining"] = "0"
            return response

        return await call_next(request)


def build_rate_limit_policies(settings_obj) -> Dict[str, Optional[WindowPolicy]]:
    limit = _parse_limit(getattr(settings_obj, "REDEEM_RATE_LIMIT", None))
    window = _parse_limit(getattr(settings_obj, "REDEEM_RATE_WINDOW_SECONDS", None))
    if not limit or not window:
        return {"redeem": None}
    return {"redeem": WindowPolicy(limit=limit, window_seconds=window)}
