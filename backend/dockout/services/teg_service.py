"""
Client for the logistics event API (TEG) that receives the final loaded
quantities of a VEP token and any additional loading materials.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from dockout.config import settings
from dockout.core.exceptions import UpstreamDomainError, UpstreamHttpError
from dockout.upstream.http import UpstreamClient, UpstreamResponse, upstream_client
from dockout.utils.extraction import Path, first_present
from dockout.utils.logging import mask_secret

logger = logging.getLogger(__name__)

TOKEN_EXTRACTION_PATHS: Tuple[Path, ...] = (
    ("token",),
    ("access_token",),
    ("authToken",),
    ("auth_token",),
    ("Token",),
    ("AccessToken",),
    ("AuthToken",),
    ("jwt",),
    ("JWT",),
    ("data", "token"),
    ("data", "access_token"),
    ("data", "authToken"),
    ("result", "token"),
    ("result", "access_token"),
    ("result", "authToken"),
)

# a bare string body is taken as the token only above this length
MIN_BARE_TOKEN_LENGTH = 10


def extract_token(body: Any) -> Optional[str]:
    if isinstance(body, str):
        return body if len(body) > MIN_BARE_TOKEN_LENGTH else None
    token = first_present(body, TOKEN_EXTRACTION_PATHS)
    return str(token) if token is not None else None


def error_message(response: UpstreamResponse, fallback: str) -> str:
    body = response.json_or_none()
    if isinstance(body, dict):
        message = body.get("error") or body.get("message")
        if message:
            return str(message)
    return response.text or fallback


class TegService:
    def __init__(self, client: Optional[UpstreamClient] = None):
        self._client = client or upstream_client

    async def authenticate(self) -> str:
        response = await self._client.request(
            "POST",
            settings.TEG_AUTH_URL,
            headers={"Content-Type": "application/json"},
            json_body={"username": settings.TEG_USERNAME, "password": settings.TEG_PASSWORD},
        )
        if not response.ok:
            logger.warning("teg_auth_failed status=%s", response.status)
            raise UpstreamHttpError(
                "Failed to authenticate with TEG", status_code=response.status, body=response.text
            )

        body = response.json_or_none()
        if body is None and response.text:
            body = response.text.strip()
        token = extract_token(body)
        if not token:
            keys = sorted(body.keys()) if isinstance(body, dict) else []
            logger.warning("teg_auth_no_token response_keys=%s", keys)
            raise UpstreamDomainError("No token received from TEG API", details={"response_keys": keys})

        logger.info("teg_auth_ok token=%s", mask_secret(token))
        return token

    async def _post(self, url: str, auth_token: str, payload: Dict[str, Any], failure: str) -> Any:
        if not auth_token:
            raise UpstreamDomainError("Authorization token is required")
        logger.debug("teg_payload url=%s payload=%s", url, payload)
        response = await self._client.request(
            "POST",
            url,
            headers={"Content-Type": "application/json", "token": auth_token},
            json_body=payload,
        )
        if not response.ok:
            message = error_message(response, failure)
            logger.warning("teg_post_failed url=%s status=%s message=%s", url, response.status, message)
            raise UpstreamHttpError(message, status_code=response.status, body=response.text)
        return response.json_or_none()

    async def send_loading_update(self, auth_token: str, payload: Dict[str, Any]) -> Any:
        return await self._post(settings.TEG_UPDATE_URL, auth_token, payload, "Failed to update TEG data")

    async def send_additional_materials(self, auth_token: str, payload: Dict[str, Any]) -> Any:
        return await self._post(
            settings.TEG_ADDITIONAL_MATERIALS_URL,
            auth_token,
            payload,
            "Failed to save additional materials",
        )
