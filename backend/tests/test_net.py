import pytest
from fastapi import Request

from evalify.core import net
from evalify.core.config import settings


def _request(headers: dict[str, str], client=("203.0.113.9", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": client,
    }
    return Request(scope)


def test_normalize_subnet():
    assert net.normalize_subnet(" 192.168.10.77/24 ") == "192.168.10.0/24"
    assert net.normalize_subnet("10.0.0.1") == "10.0.0.1/32"
    with pytest.raises(ValueError):
        net.normalize_subnet("")
    with pytest.raises(ValueError):
        net.normalize_subnet("300.1.1.1/24")


def test_ip_in_subnet():
    assert net.is_ip_in_subnet("10.1.2.3", "10.1.0.0/16")
    assert not net.is_ip_in_subnet("10.2.0.1", "10.1.0.0/16")
    assert not net.is_ip_in_subnet("::1", "10.1.0.0/16")
    assert not net.is_ip_in_subnet("garbage", "10.1.0.0/16")
    assert not net.is_ip_in_subnet("10.1.2.3", None)


def test_client_in_lab_subnets():
    subnets = ["10.1.0.0/16", "", "192.168.5.0/24"]
    assert net.is_client_in_lab_subnets("192.168.5.20", subnets)
    assert not net.is_client_in_lab_subnets("172.16.0.1", subnets)
    assert not net.is_client_in_lab_subnets(None, subnets)
    assert not net.is_client_in_lab_subnets("10.1.0.1", [])


def test_client_ip_ignores_proxy_headers_by_default(monkeypatch):
    monkeypatch.setattr(settings, "trust_proxy_headers", False)
    assert net.client_ip(_request({"X-Forwarded-For": "10.0.0.1"})) == "203.0.113.9"


def test_client_ip_prefers_forwarded_headers_when_trusted(monkeypatch):
    monkeypatch.setattr(settings, "trust_proxy_headers", True)
    assert net.client_ip(_request({"X-Forwarded-For": "10.0.0.1, 10.0.0.2"})) == "10.0.0.1"
    assert net.client_ip(_request({"X-Real-IP": "10.0.0.3", "CF-Connecting-IP": "10.0.0.4"})) == "10.0.0.3"
    assert net.client_ip(_request({"CF-Connecting-IP": "10.0.0.4"})) == "10.0.0.4"
    assert net.client_ip(_request({}, client=None)) is None
