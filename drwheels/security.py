"""HTTP security middleware: headers, per-IP rate limits and request scrubbing."""
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Tuple
from urllib.parse import parse_qsl, urlencode

from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from . import config
from .utils import clean_key, scrub_payload, strip_markup

logger = logging.getLogger(__name__)

# Query parameters allowed to repeat
POLLUTION_WHITELIST = ("page", "limit", "sortBy", "sortOrder")

NO_STORE_PREFIXES = ("/api/auth", "/api/users")

CONTENT_SECURITY_POLICY = "; ".join(
    [
        "default-src 'self'",
        "style-src 'self' 'unsafe-inline'",
        "script-src 'self'",
        "img-src 'self' data: https:",
        "connect-src 'self'",
        "font-src 'self' https: data:",
        "object-src 'none'",
        "media-src 'self'",
        "frame-src 'none'",
    ]
)

PERMISSIONS_POLICY = ", ".join(
    f"{feature}=()"
    for feature in (
        "geolocation", "microphone", "camera", "payment",
        "usb", "magnetometer", "gyroscope", "accelerometer",
    )
)


def client_ip(scope) -> str:
    client = scope.get("client")
    return client[0] if client else "unknown"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        headers = response.headers
        csp = CONTENT_SECURITY_POLICY
        hsts = "max-age=31536000; includeSubDomains"
        if config.is_production():
            csp += "; upgrade-insecure-requests"
            hsts += "; preload"
        headers["Content-Security-Policy"] = csp
        headers["Strict-Transport-Security"] = hsts
        headers["X-Frame-Options"] = "DENY"
        headers["X-Content-Type-Options"] = "nosniff"
        headers["X-DNS-Prefetch-Control"] = "off"
        headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        headers["Permissions-Policy"] = PERMISSIONS_POLICY
        headers["Cross-Origin-Opener-Policy"] = "same-origin"
        headers["Cross-Origin-Resource-Policy"] = "cross-origin"
        headers["X-Download-Options"] = "noopen"
        headers["X-XSS-Protection"] = "0"
        headers["X-Request-ID"] = request.headers.get("x-request-id") or uuid.uuid4().hex
        if "x-powered-by" in headers:
            del headers["x-powered-by"]

        if request.url.path.startswith(NO_STORE_PREFIXES):
            headers["Cache-Control"] = "no-store, no-cache, must-revalidate, private"
            headers["Pragma"] = "no-cache"
            headers["Expires"] = "0"
        return response


# -------------------- Rate limiting --------------------


@dataclass
class RateLimitTier:
    """A fixed-window request budget per client IP."""

    name: str
    window_seconds: int
    max_requests: int
    message: str
    applies: Callable[[Request], bool]
    skip_successful: bool = False
    clock: Callable[[], float] = time.monotonic
    _windows: Dict[str, Tuple[float, int]] = field(default_factory=dict)

    def _current(self, key: str) -> Tuple[float, int]:
        now = self.clock()
        start, count = self._windows.get(key, (now, 0))
        if now - start >= self.window_seconds:
            start, count = now, 0
        return start, count

    def exhausted(self, key: str) -> bool:
        _, count = self._current(key)
        return count >= self.max_requests

    def hit(self, key: str) -> int:
        start, count = self._current(key)
        self._windows[key] = (start, count + 1)
        return self.max_requests - (count + 1)

    def reset_in(self, key: str) -> int:
        start, _ = self._current(key)
        return max(0, int(start + self.window_seconds - self.clock()))

    def reset(self):
        self._windows.clear()


def _is_api(request: Request) -> bool:
    return request.url.path.startswith("/api")


def _is_auth_attempt(request: Request) -> bool:
    return request.method == "POST" and request.url.path in ("/api/auth/login", "/api/auth/register")


def _is_sensitive(request: Request) -> bool:
    return request.method == "POST" and request.url.path.rstrip("/") == "/api/orders"


def default_tiers() -> List[RateLimitTier]:
    return [
        RateLimitTier(
            name="general",
            window_seconds=15 * 60,
            max_requests=100,
            message="Too many requests from this IP, please try again later.",
            applies=_is_api,
        ),
        RateLimitTier(
            name="auth",
            window_seconds=15 * 60,
            max_requests=5,
            message="Too many authentication attempts, please try again later.",
            applies=_is_auth_attempt,
            skip_successful=True,
        ),
        RateLimitTier(
            name="strict",
            window_seconds=60 * 60,
            max_requests=10,
            message="Too many requests, please try again later.",
            applies=_is_sensitive,
        ),
    ]


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, tiers: List[RateLimitTier] = None):
        super().__init__(app)
        self.tiers = tiers if tiers is not None else default_tiers()

    async def dispatch(self, request: Request, call_next):
        if not config.is_rate_limited():
            return await call_next(request)

        ip = client_ip(request.scope)
        tiers = [t for t in self.tiers if t.applies(request)]
        for tier in tiers:
            if tier.exhausted(ip):
                logger.warning("rate limit '%s' exceeded by %s on %s", tier.name, ip, request.url.path)
                return JSONResponse(
                    {"error": tier.message},
                    status_code=429,
                    headers={"Retry-After": str(tier.reset_in(ip))},
                )

        remaining = {}
        for tier in tiers:
            if not tier.skip_successful:
                remaining[tier.name] = tier.hit(ip)

        response = await call_next(request)

        for tier in tiers:
            if tier.skip_successful and response.status_code >= 400:
                tier.hit(ip)

        general = next((t for t in tiers if t.name == "general"), None)
        if general is not None:
            response.headers["RateLimit-Limit"] = str(general.max_requests)
            response.headers["RateLimit-Remaining"] = str(max(0, remaining["general"]))
            response.headers["RateLimit-Reset"] = str(general.reset_in(ip))
        return response


# -------------------- Request scrubbing --------------------


class ParameterPollutionMiddleware:
    """Collapse repeated query parameters to their last value.

    Whitelisted parameters keep every value.
    """

    def __init__(self, app, whitelist=POLLUTION_WHITELIST):
        self.app = app
        self.whitelist = set(whitelist)

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and scope.get("query_string"):
            pairs = parse_qsl(scope["query_string"].decode("latin-1"), keep_blank_values=True)
            last = dict(pairs)
            collapsed = []
            emitted = set()
            for key, value in pairs:
                if key in self.whitelist:
                    collapsed.append((key, value))
                elif key not in emitted:
                    emitted.add(key)
                    collapsed.append((key, last[key]))
            if collapsed != pairs:
                scope = dict(scope)
                scope["query_string"] = urlencode(collapsed).encode("latin-1")
        await self.app(scope, receive, send)


class RequestSanitizerMiddleware:
    """Scrub operator-style keys and markup from query strings and JSON bodies."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        scope = self._clean_query(scope)
        headers = Headers(scope=scope)
        if "application/json" not in headers.get("content-type", ""):
            await self.app(scope, receive, send)
            return

        body = b""
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] != "http.request":
                break
            body += message.get("body", b"")
            more_body = message.get("more_body", False)

        cleaned = self._clean_body(scope, body)
        if cleaned is not body:
            scope = dict(scope)
            scope["headers"] = [
                (k, v) for k, v in scope["headers"] if k.lower() != b"content-length"
            ] + [(b"content-length", str(len(cleaned)).encode("latin-1"))]

        replayed = False

        async def replay():
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": cleaned, "more_body": False}
            return await receive()

        await self.app(scope, replay, send)

    def _clean_query(self, scope):
        raw = scope.get("query_string", b"")
        if not raw:
            return scope
        pairs = parse_qsl(raw.decode("latin-1"), keep_blank_values=True)
        cleaned = [(clean_key(k), strip_markup(v)) for k, v in pairs]
        if cleaned == pairs:
            return scope
        logger.warning("sanitized query string from %s on %s", client_ip(scope), scope.get("path"))
        scope = dict(scope)
        scope["query_string"] = urlencode(cleaned).encode("latin-1")
        return scope

    def _clean_body(self, scope, body: bytes) -> bytes:
        if not body:
            return body
        try:
            data = json.loads(body)
        except ValueError:
            # Let the route report the malformed body
            return body
        cleaned, touched = scrub_payload(data)
        if not touched:
            return body
        logger.warning("sanitized JSON body from %s on %s", client_ip(scope), scope.get("path"))
        return json.dumps(cleaned).encode("utf-8")
