from __future__ import annotations

import ipaddress
from collections.abc import Iterable

from fastapi import Request

from evalify.core.config import settings


def client_ip(request: Request) -> str | None:
    """Best-effort client address.

    Proxy headers are only honoured when TRUST_PROXY_HEADERS is set, in the order
    X-Forwarded-For (first hop), X-Real-IP, CF-Connecting-IP.
    """
    if bool(settings.trust_proxy_headers):
        xff = str(request.headers.get("x-forwarded-for") or "")
        if xff:
            ip = xff.split(",")[0].strip()
            if ip:
                return ip

        for header in ("x-real-ip", "cf-connecting-ip"):
            value = str(request.headers.get(header) or "").strip()
            if value:
                return value

    if request.client and request.client.host:
        return request.client.host
    return None


def normalize_subnet(value: str) -> str:
    """Return the canonical CIDR form or raise ValueError."""
    raw = str(value or "").strip()
    if not raw:
        raise ValueError("empty subnet")
    return str(ipaddress.ip_network(raw, strict=False))


def is_ip_in_subnet(ip: str | None, subnet: str | None) -> bool:
    try:
        addr = ipaddress.ip_address(str(ip or "").strip())
        net = ipaddress.ip_network(str(subnet or "").strip(), strict=False)
    except ValueError:
        return False
    if addr.version != net.version:
        return False
    return addr in net


def is_client_in_lab_subnets(ip: str | None, subnets: Iterable[str]) -> bool:
    subnets = [s for s in subnets if s]
    if not ip or not subnets:
        return False
    return any(is_ip_in_subnet(ip, s) for s in subnets)
