"""
Thin aiohttp transport shared by the SAP OData and TEG clients.

Services only ever see ``UpstreamResponse``; tests substitute any object with
a compatible ``request`` coroutine.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiohttp

from dockout.config import settings
from dockout.core.exceptions import UpstreamHttpError, UpstreamTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class UpstreamCredentials:
    username: str
    password: str
    client: Optional[str] = None

    def basic_auth(self) -> aiohttp.BasicAuth:
        return aiohttp.BasicAuth(self.username, self.password)


@dataclass
class UpstreamResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    set_cookies: List[str] = field(default_factory=list)
    text: str = ""
    content_type: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> Optional[str]:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    def json_or_none(self) -> Optional[Any]:
        if not self.text:
            return None
        try:
            return json.loads(self.text)
        except ValueError:
            return None


class UpstreamClient:
    """One aiohttp session per client; every call is bounded by a total timeout."""

    def __init__(self, timeout_seconds: Optional[float] = None, verify_ssl: Optional[bool] = None):
        self._timeout = aiohttp.ClientTimeout(
            total=timeout_seconds if timeout_seconds is not None else settings.UPSTREAM_TIMEOUT_SECONDS
        )
        self._verify_ssl = settings.UPSTREAM_VERIFY_SSL if verify_ssl is None else verify_ssl
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=20, ssl=None if self._verify_ssl else False)
            # cookies are forwarded by hand per CSRF session, never shared across calls
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=self._timeout,
                cookie_jar=aiohttp.DummyCookieJar(),
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        auth: Optional[UpstreamCredentials] = None,
        json_body: Any = None,
        params: Optional[Dict[str, str]] = None,
    ) -> UpstreamResponse:
        session = await self._get_session()
        kwargs: Dict[str, Any] = {"headers": headers or {}}
        if auth is not None:
            kwargs["auth"] = auth.basic_auth()
        if json_body is not None:
            kwargs["data"] = json.dumps(json_body)
        if params:
            kwargs["params"] = params

        logger.info("upstream_request method=%s url=%s", method, url)
        try:
            async with session.request(method, url, **kwargs) as resp:
                text = await resp.text() if method.upper() != "HEAD" else ""
                set_cookies = resp.headers.getall("Set-Cookie", [])
                response = UpstreamResponse(
                    status=resp.status,
                    headers={k: v for k, v in resp.headers.items() if k.lower() != "set-cookie"},
                    set_cookies=list(set_cookies),
                    text=text,
                    content_type=resp.headers.get("Content-Type", ""),
                )
        except asyncio.TimeoutError as exc:
            logger.warning("upstream_timeout method=%s url=%s", method, url)
            raise UpstreamTimeoutError(
                f"Upstream call timed out after {self._timeout.total:.0f}s: {method} {url}"
            ) from exc
        except aiohttp.ClientError as exc:
            logger.warning("upstream_connection_error method=%s url=%s error=%s", method, url, exc)
            raise UpstreamHttpError(f"Upstream connection failed: {exc}") from exc

        logger.info("upstream_response method=%s url=%s status=%s", method, url, response.status)
        return response


upstream_client = UpstreamClient()
