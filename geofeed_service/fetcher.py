"""
HTTP Fetch Capability

Wraps ``requests`` behind an awaitable ``fetch(url) -> bytes`` with a bounded
timeout. Requests run on a thread pool so several sources can be outstanding
at once while the event loop that owns all entity state stays single-threaded.
Transport and status failures are mapped onto the feed error taxonomy.
"""

import asyncio
import json
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional

import requests

import config
from geofeed_service.errors import DecodeError, HttpStatusError, TransportError
from logging_config import get_logger

logger = get_logger(__name__)


class HttpFetcher:
    """
    Awaitable HTTP GET client.

    Parameters
    ----------
    timeout : float
        Per-request timeout in seconds (connect and read).
    max_workers : int
        Size of the thread pool running blocking requests.
    session : requests.Session, optional
        Pre-configured session, mainly for tests.
    """

    def __init__(self, timeout: float = config.HTTP_TIMEOUT_S, max_workers: int = 8,
                 session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", config.USER_AGENT)
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="geofeed-http")

    def _get(self, url: str, params: Optional[Dict[str, Any]], headers: Optional[Dict[str, str]],
             timeout: float) -> bytes:
        try:
            response = self.session.get(url, params=params, headers=headers, timeout=timeout)
        except requests.Timeout as e:
            raise TransportError(f"Timed out after {timeout:.0f}s: {e}", url) from e
        except requests.RequestException as e:
            raise TransportError(f"Request failed: {e}", url) from e

        if not 200 <= response.status_code < 300:
            raise HttpStatusError(response.status_code, url)

        return response.content

    async def fetch(self, url: str, params: Optional[Dict[str, Any]] = None,
                    headers: Optional[Dict[str, str]] = None,
                    timeout: Optional[float] = None) -> bytes:
        """Fetch ``url`` and return the raw body."""
        loop = asyncio.get_running_loop()
        effective_timeout = timeout or self.timeout
        logger.debug("HTTP GET", url=url, params=params)
        return await loop.run_in_executor(
            self.executor, self._get, url, params, headers, effective_timeout
        )

    async def fetch_json(self, url: str, params: Optional[Dict[str, Any]] = None,
                         headers: Optional[Dict[str, str]] = None,
                         timeout: Optional[float] = None) -> Any:
        body = await self.fetch(url, params=params, headers=headers, timeout=timeout)
        return decode_json(body, url)

    async def fetch_text(self, url: str, params: Optional[Dict[str, Any]] = None,
                         headers: Optional[Dict[str, str]] = None,
                         timeout: Optional[float] = None) -> str:
        body = await self.fetch(url, params=params, headers=headers, timeout=timeout)
        return decode_text(body, url)

    def close(self) -> None:
        self.executor.shutdown(wait=False, cancel_futures=True)
        self.session.close()


def decode_json(body: bytes, url: Optional[str] = None) -> Any:
    try:
        return json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise DecodeError(f"Invalid JSON payload: {e}", url) from e


def decode_text(body: bytes, url: Optional[str] = None) -> str:
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError(f"Payload is not UTF-8 text: {e}", url) from e
