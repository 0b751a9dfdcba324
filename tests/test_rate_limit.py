"""Tests for the per-IP sliding window limiter."""

from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from starlette.requests import Request

from linkcast.middleware import rate_limit
from linkcast.middleware.rate_limit import _sliding_window_check, check_rate_limit, get_real_ip


@pytest.fixture(autouse=True)
def clean_store(monkeypatch):
    monkeypatch.setattr(rate_limit, "_memory_store", {})


def _request(headers=None, client=("198.51.100.4", 5000)) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "headers": raw, "client": client})


class TestSlidingWindow:
    def test_allows_up_to_limit(self):
        results = [_sliding_window_check("ip:a", limit=3) for _ in range(4)]
        assert [allowed for allowed, _ in results] == [True, True, True, False]
        assert [remaining for _, remaining in results] == [2, 1, 0, 0]

    def test_keys_are_independent(self):
        for _ in range(2):
            _sliding_window_check("ip:a", limit=2)
        allowed, _ = _sliding_window_check("ip:b", limit=2)
        assert allowed is True

    def test_old_hits_expire(self, monkeypatch):
        clock = iter([1000.0, 1001.0, 1070.0])
        monkeypatch.setattr(rate_limit, "time", SimpleNamespace(time=lambda: next(clock)))
        assert _sliding_window_check("ip:a", limit=1)[0] is True
        assert _sliding_window_check("ip:a", limit=1)[0] is False
        assert _sliding_window_check("ip:a", limit=1)[0] is True


class TestCheckRateLimit:
    def test_raises_429_with_headers(self):
        check_rate_limit("ip:a", limit=1)
        with pytest.raises(HTTPException) as exc:
            check_rate_limit("ip:a", limit=1)
        assert exc.value.status_code == 429
        assert exc.value.headers["Retry-After"] == "60"
        assert exc.value.headers["X-RateLimit-Remaining"] == "0"


class TestGetRealIp:
    def test_first_public_forwarded_ip(self):
        req = _request({"X-Forwarded-For": "10.0.0.1, 203.0.113.7, 198.51.100.1"})
        assert get_real_ip(req) == "203.0.113.7"

    def test_all_private_falls_back_to_first(self):
        req = _request({"X-Forwarded-For": "192.168.1.5, 10.0.0.1"})
        assert get_real_ip(req) == "192.168.1.5"

    def test_socket_peer_without_header(self):
        assert get_real_ip(_request()) == "198.51.100.4"

    def test_no_client(self):
        assert get_real_ip(_request(client=None)) == "unknown"
