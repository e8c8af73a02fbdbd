"""
Test doubles shared across the test modules: an in-memory fetcher with
optional gating and a minimal Redis client.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import redis

from geofeed_service.errors import TransportError

ISS_NAME = "ISS (ZARYA)"
ISS_LINE1 = "1 25544U 98067A   23259.57580000  .00012022  00000-0  21844-3 0  9995"
ISS_LINE2 = "2 25544  51.6416 220.9944 0004263 122.0101 312.2755 15.49541986415598"

VANGUARD_NAME = "VANGUARD 1"
VANGUARD_LINE1 = "1 00005U 58002B   00179.78495062  .00000023  00000-0  28098-4 0  4753"
VANGUARD_LINE2 = "2 00005  34.2682 348.7242 1859667 331.7664  19.3264 10.82419157413667"

# Valid checksum, mean motion of zero
ZERO_MOTION_LINE2 = "2 25544  51.6416 220.9944 0004263 122.0101 312.2755  0.00000000415596"
# Last digit off by one
BAD_CHECKSUM_LINE1 = "1 25544U 98067A   23259.57580000  .00012022  00000-0  21844-3 0  9994"


def with_query(url: str, **params: Any) -> str:
    return f"{url}?{urlencode(sorted(params.items()))}"


def tle_text(*sets: Tuple[str, str, str], newline: str = "\n") -> str:
    lines: List[str] = []
    for name, line1, line2 in sets:
        if name:
            lines.append(name)
        lines.extend([line1, line2])
    return newline.join(lines) + newline


class FakeFetcher:
    """
    Fetcher double keyed by URL (with sorted query string when params are given).

    A response may be a value, an exception instance to raise, or a callable
    producing either. Set ``gate`` to an ``asyncio.Event`` to hold every
    fetch until the event is set.
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None):
        self.responses: Dict[str, Any] = dict(responses or {})
        self.calls: List[str] = []
        self.gate: Optional[asyncio.Event] = None
        self.in_flight = 0
        self.max_in_flight = 0

    def _key(self, url: str, params: Optional[Dict[str, Any]]) -> str:
        return with_query(url, **params) if params else url

    async def fetch(self, url: str, params: Optional[Dict[str, Any]] = None,
                    headers: Optional[Dict[str, str]] = None,
                    timeout: Optional[float] = None) -> Any:
        key = self._key(url, params)
        self.calls.append(key)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if key in self.responses:
                response = self.responses[key]
            elif url in self.responses:
                response = self.responses[url]
            else:
                raise TransportError(f"No fake response for {key}", url)
            if callable(response):
                response = response()
            if isinstance(response, BaseException):
                raise response
            return response
        finally:
            self.in_flight -= 1

    async def fetch_json(self, url: str, params=None, headers=None, timeout=None) -> Any:
        value = await self.fetch(url, params=params, headers=headers, timeout=timeout)
        if isinstance(value, (bytes, str)):
            return json.loads(value)
        return value

    async def fetch_text(self, url: str, params=None, headers=None, timeout=None) -> str:
        value = await self.fetch(url, params=params, headers=headers, timeout=timeout)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def close(self) -> None:
        pass


class FakeRedis:
    """Just enough of a redis client for the settings store."""

    def __init__(self, fail: bool = False):
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.fail = fail
        self.hset_calls = 0

    def _check(self):
        if self.fail:
            raise redis.exceptions.ConnectionError("connection refused")

    def hgetall(self, key: str) -> Dict[str, str]:
        self._check()
        return dict(self.hashes.get(key, {}))

    def hset(self, key: str, mapping: Dict[str, str]) -> int:
        self._check()
        self.hset_calls += 1
        self.hashes.setdefault(key, {}).update(mapping)
        return len(mapping)

    def delete(self, key: str) -> int:
        self._check()
        return 1 if self.hashes.pop(key, None) is not None else 0
