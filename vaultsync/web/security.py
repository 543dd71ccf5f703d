from __future__ import annotations

import ipaddress
import os
from typing import Iterable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


def parse_nets(values: Iterable[str]) -> list[IPNetwork]:
    nets: list[IPNetwork] = []
    for value in values:
        s = (value or "").strip()
        if not s:
            continue
        try:
            nets.append(ipaddress.ip_network(s, strict=False))
        except ValueError as exc:
            raise ValueError(f"invalid allowed network: {s}") from exc
    return nets


class NetworkAllowlistMiddleware(BaseHTTPMiddleware):
    """Reject requests whose client address is outside the allowed networks.

    The API can trigger writes to the remote document store, so it is closed
    by default to anything but loopback. An empty allowlist admits everyone.
    """

    def __init__(self, app, allowed_nets: Iterable[str]):
        super().__init__(app)
        self.allowed: list[IPNetwork] = []
        self.allowlist_error: str | None = None
        try:
            self.allowed = parse_nets(allowed_nets)
        except ValueError as exc:
            self.allowlist_error = str(exc)

    async def dispatch(self, request: Request, call_next):
        if self.allowlist_error:
            return PlainTextResponse(f"access denied: {self.allowlist_error}", status_code=503)

        if self.allowed:
            client_host = request.client.host if request.client else ""
            try:
                ip = ipaddress.ip_address(client_host)
            except ValueError:
                return PlainTextResponse("access denied: unrecognized client address", status_code=403)
            if not any(ip in net for net in self.allowed):
                return PlainTextResponse("access denied: client address not allowed", status_code=403)

        return await call_next(request)


def get_allowed_nets(configured: Iterable[str]) -> list[str]:
    """``VAULTSYNC_ALLOWED_NETS`` (comma separated) overrides the config list."""
    raw = os.environ.get("VAULTSYNC_ALLOWED_NETS")
    if raw is not None:
        return [s.strip() for s in raw.split(",") if s.strip()]
    return [s for s in configured if s]
