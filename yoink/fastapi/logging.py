"""Access logging middleware for FastAPI/Uvicorn."""

import logging
import sys
import time
from ipaddress import IPv6Address

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("yoink.access")

_RESET = "\033[0m"
_STATUS_OK = "\033[92m"  # 2xx
_STATUS_REDIRECT = "\033[32m"  # 1xx, 3xx
_STATUS_CLIENT_ERR = "\033[0;31m"  # 4xx
_STATUS_SERVER_ERR = "\033[1;31m"  # 5xx
_METHOD_READ = "\033[0;34m"
_METHOD_WRITE = "\033[1;34m"
_HOST = "\033[1;30m"
_TIMING = "\033[2m"


def format_client_ip(ip: str) -> str:
    """Format client IP, showing only the /64 network of IPv6 addresses."""
    if not ip or ip == "-":
        return "-"
    if ":" not in ip:
        return ip
    try:
        network = int(IPv6Address(ip)) >> 64 << 64
    except ValueError:
        return ip
    return str(IPv6Address(network))


def status_color(status: int) -> str:
    if status >= 500:
        return _STATUS_SERVER_ERR
    if status >= 400:
        return _STATUS_CLIENT_ERR
    if 200 <= status < 300:
        return _STATUS_OK
    return _STATUS_REDIRECT


def format_access_log(
    client: str,
    status: int,
    method: str,
    host: str,
    path: str,
    duration_ms: float,
    use_color: bool = False,
) -> str:
    """Format: "IP STATUS METHOD hostpath TIMING", aligned."""
    ip = format_client_ip(client).ljust(15)
    timing = f"{duration_ms:.0f}ms"
    method_padded = method.ljust(7)
    if not use_color:
        return f"{ip} {status} {method_padded} {host}{path} {timing}"
    mcolor = _METHOD_READ if method in ("GET", "HEAD", "OPTIONS") else _METHOD_WRITE
    return (
        f"{ip} {status_color(status)}{status}{_RESET} "
        f"{mcolor}{method_padded}{_RESET} {_HOST}{host}{_RESET}{path} "
        f"{_TIMING}{timing}{_RESET}"
    )


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Middleware that logs HTTP requests with custom format."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        path = request.url.path
        if request.url.query:
            path = f"{path}?{request.url.query}"
        logger.info(
            format_access_log(
                request.client.host if request.client else "-",
                response.status_code,
                request.method,
                request.headers.get("host", "-"),
                path,
                duration_ms,
                use_color=sys.stderr.isatty(),
            )
        )
        return response


def configure_access_logging():
    """Configure the access logger to output to stderr."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
