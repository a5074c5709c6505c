from __future__ import annotations

"""
ReelDrop — HTTP Rate Limiting (SlowAPI)
=======================================

The public upload surface has no per-user auth (the link token is the only
gate), so limits are keyed per client IP.

Highlights
----------
- **IP keying** using XFF/X-Real-IP/client.host.
- **Exemptions**: health/docs paths, configurable trusted IPs.
- **Test/CI friendly**:
    - `RATE_LIMIT_NAMESPACE`: prefixes keys so parallel runs don't collide.
    - `RATE_LIMIT_TEST_BYPASS`: disables limits when truthy.
- **Backends**: Redis via `RATELIMIT_STORAGE_URI` or in-memory fallback.

Environment
-----------
RATE_LIMIT_ENABLED           default: "true"
DEFAULT_RATE_LIMIT           default: "300/minute"
RATELIMIT_STORAGE_URI        default: "" (falls back to "memory://")
RATELIMIT_STRATEGY           default: "moving-window"
RATE_LIMIT_SKIP_PATHS        default: "/healthz,/readyz,/docs,/openapi.json"
RATE_LIMIT_TRUSTED_IPS       default: "" (comma separated)
RATE_LIMIT_NAMESPACE         default: ""
RATE_LIMIT_TEST_BYPASS       default: ""

Usage
-----
    from reeldrop.core.limiter import install_rate_limiter, rate_limit, rate_limit_exempt

    @router.post("/upload/presigned")
    @rate_limit("60/minute")
    async def presigned(request: Request, ...): ...
"""

import os
from typing import Callable, List, Optional, Set

from dotenv import load_dotenv
from loguru import logger
from slowapi import Limiter
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.requests import Request

# ──────────────────────────────────────────────────────────────
# ⚙️ Environment & defaults
# ──────────────────────────────────────────────────────────────
load_dotenv()

RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
DEFAULT_LIMIT = os.getenv("DEFAULT_RATE_LIMIT", "300/minute").strip()
STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "").strip()
STRATEGY = os.getenv("RATELIMIT_STRATEGY", "moving-window").strip()

SKIP_PATHS: List[str] = [
    p.strip()
    for p in os.getenv("RATE_LIMIT_SKIP_PATHS", "/healthz,/readyz,/docs,/openapi.json").split(",")
    if p.strip()
]
TRUSTED_IPS: Set[str] = {ip.strip() for ip in os.getenv("RATE_LIMIT_TRUSTED_IPS", "").split(",") if ip.strip()}
NAMESPACE = os.getenv("RATE_LIMIT_NAMESPACE", "").strip()


# ──────────────────────────────────────────────────────────────
# 🧠 Keying & exemptions
# ──────────────────────────────────────────────────────────────
def _client_ip(request: Request) -> str:
    """Best-effort client IP: X-Forwarded-For (first hop) → X-Real-IP → ASGI client."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        ip = xff.split(",")[0].strip()
        if ip:
            return ip
    xri = request.headers.get("x-real-ip")
    if xri:
        return xri.strip()
    return get_remote_address(request) or "unknown"


def get_rate_limit_key(request: Request) -> str:
    """`ip:<addr>`, prefixed with RATE_LIMIT_NAMESPACE when set."""
    key = f"ip:{_client_ip(request)}"
    return f"{NAMESPACE}:{key}" if NAMESPACE else key


def should_exempt_request(request: Optional[Request]) -> bool:
    """
    Exempt a request when limits are disabled, the path is skipped, the client
    IP is trusted, or the test bypass is on. Env flags are re-read per request
    so tests can toggle them without re-importing this module.
    """
    if os.getenv("RATE_LIMIT_ENABLED", "true").strip().lower() != "true":
        return True
    if os.getenv("RATE_LIMIT_TEST_BYPASS", "").strip().lower() in {"1", "true", "yes", "on"}:
        return True
    if request is None:
        return False
    path = request.url.path
    if any(path == p or path.startswith(p.rstrip("/") + "/") for p in SKIP_PATHS):
        return True
    return _client_ip(request) in TRUSTED_IPS


# ──────────────────────────────────────────────────────────────
# 🧰 Limiter instance (Redis / memory)
# ──────────────────────────────────────────────────────────────
def _build_default_limits() -> List[str]:
    return [chunk.strip() for chunk in DEFAULT_LIMIT.split(",") if chunk.strip()]


def _make_limiter() -> Limiter:
    storage_uri = STORAGE_URI or "memory://"
    limiter = Limiter(
        key_func=get_rate_limit_key,
        default_limits=_build_default_limits(),
        headers_enabled=False,
        storage_uri=storage_uri,
        strategy=STRATEGY,
    )
    logger.info(
        "RateLimiter ready | enabled={} | default={} | storage={} | ns={}",
        RATE_LIMIT_ENABLED, _build_default_limits(), storage_uri, NAMESPACE,
    )
    return limiter


limiter: Limiter = _make_limiter()


# ──────────────────────────────────────────────────────────────
# 🎛 Decorators
# ──────────────────────────────────────────────────────────────
def _exempt_when(request: Optional[Request] = None) -> bool:
    req = request
    if req is None:
        try:
            req = limiter._request_context.get()  # type: ignore[attr-defined]
        except (AttributeError, LookupError):
            req = None
    return should_exempt_request(req)


def rate_limit(*limits: str) -> Callable:
    """
    Apply per-route limits with ReelDrop exemptions.

    Examples
    --------
    @rate_limit("60/minute")
    @rate_limit("5/second", "300/minute")
    """
    selected = list(limits) if limits else _build_default_limits()
    decorators = [limiter.limit(value, exempt_when=_exempt_when) for value in selected]

    def _apply(fn: Callable) -> Callable:
        for deco in reversed(decorators):
            fn = deco(fn)
        return fn

    return _apply


def rate_limit_exempt() -> Callable:
    """Explicitly exempt a route from limiting."""
    return limiter.exempt


# ──────────────────────────────────────────────────────────────
# 🔧 Installer
# ──────────────────────────────────────────────────────────────
def install_rate_limiter(app) -> None:
    """Attach SlowAPI state + middleware (skipped when RATE_LIMIT_ENABLED=false)."""
    app.state.limiter = limiter
    if not RATE_LIMIT_ENABLED:
        logger.info("RateLimiter disabled by env; middleware not installed")
        return
    app.add_middleware(SlowAPIMiddleware)
    logger.info("SlowAPI middleware installed")
