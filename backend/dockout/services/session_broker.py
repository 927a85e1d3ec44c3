"""
Session/CSRF Broker

SAP OData rejects a mutating call unless it carries a CSRF token together with
the session cookies that were issued alongside it. The broker performs that
handshake and wraps the authenticated POST. Nothing is cached: each mutation
acquires its own session.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from dockout.core.exceptions import SessionError, UpstreamHttpError
from dockout.upstream.http import UpstreamClient, UpstreamCredentials, UpstreamResponse
from dockout.utils.logging import mask_secret

logger = logging.getLogger(__name__)

CSRF_HEADER = "X-CSRF-Token"


@dataclass(frozen=True)
class CsrfSession:
    csrf_token: str
    cookie_header: str


def fold_cookies(set_cookie_values: List[str]) -> str:
    """Reduce ``Set-Cookie`` values to their name=value pairs, joined for a ``Cookie`` header."""
    pairs = []
    for raw in set_cookie_values:
        pair = raw.split(";", 1)[0].strip()
        if pair:
            pairs.append(pair)
    return "; ".join(pairs)


def base_headers(credentials: UpstreamCredentials) -> Dict[str, str]:
    headers = {"Accept": "application/json"}
    if credentials.client:
        headers["sap-client"] = credentials.client
    return headers


class SessionBroker:
    def __init__(self, client: UpstreamClient):
        self._client = client

    async def acquire_session(
        self,
        endpoint_url: str,
        credentials: UpstreamCredentials,
        *,
        method: str = "HEAD",
    ) -> CsrfSession:
        headers = base_headers(credentials)
        headers[CSRF_HEADER] = "Fetch"

        response = await self._client.request(method, endpoint_url, headers=headers, auth=credentials)
        if not response.ok:
            raise UpstreamHttpError(
                "Failed to fetch CSRF token",
                status_code=response.status,
                body=response.text,
            )

        token = response.header(CSRF_HEADER)
        cookie_header = fold_cookies(response.set_cookies)
        if not token or not cookie_header:
            logger.warning(
                "csrf_handshake_incomplete url=%s token_present=%s cookies=%s",
                endpoint_url,
                bool(token),
                len(response.set_cookies),
            )
            raise SessionError("CSRF token or cookies not found in response")

        logger.debug("csrf_session_acquired url=%s token=%s", endpoint_url, mask_secret(token))
        return CsrfSession(csrf_token=token, cookie_header=cookie_header)

    async def post_with_session(
        self,
        endpoint_url: str,
        credentials: UpstreamCredentials,
        payload: Any,
        *,
        handshake_method: str = "HEAD",
        session: Optional[CsrfSession] = None,
    ) -> UpstreamResponse:
        session = session or await self.acquire_session(
            endpoint_url, credentials, method=handshake_method
        )
        headers = base_headers(credentials)
        headers.update(
            {
                CSRF_HEADER: session.csrf_token,
                "Cookie": session.cookie_header,
                "Content-Type": "application/json",
            }
        )
        return await self._client.request(
            "POST", endpoint_url, headers=headers, auth=credentials, json_body=payload
        )
