"""HTD payments API client (async httpx)."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from . import config
from .errors import (
    ClientError,
    FetchTimeoutError,
    NetworkTransportError,
    NotFoundError,
    ParseError,
    ServerError,
)
from .models.payment import Payment

__all__ = ["PaymentAPI", "looks_like_jwt"]

logger = logging.getLogger(__name__)


def looks_like_jwt(token: str | None) -> bool:
    """Basic JWT shape check: three non-empty dot-separated parts.

    Example:
        >>> looks_like_jwt("a.b.c"), looks_like_jwt("undefined")
        (True, False)
    """
    if not token or not token.strip() or token in {"undefined", "null"}:
        return False
    parts = token.split(".")
    return len(parts) == 3 and all(parts)


def _raise_for_status(resp: httpx.Response) -> None:
    status = resp.status_code
    if status < 400:
        return
    snippet = resp.text[:200].replace("\n", " ")
    if status == 404:
        raise NotFoundError(f"HTTP 404: {snippet}" if snippet else "HTTP 404")
    if status >= 500:
        raise ServerError(f"HTTP {status}: {snippet}", status)
    raise ClientError(f"HTTP {status}: {snippet}", status)


def _payment_path(payment_id: str, suffix: str = "") -> str:
    return f"/htd/payments/{quote(str(payment_id), safe='')}{suffix}"


class PaymentAPI:
    """Thin client for the payment endpoints the detail view needs.

    Transport failures come out as members of the fetch error taxonomy so
    the controller can classify them without knowing about httpx.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        refresh_token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or config.API_URL).rstrip("/")
        self.token = token if token is not None else config.API_TOKEN
        self.refresh_token = (
            refresh_token if refresh_token is not None else config.API_REFRESH_TOKEN
        )
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=config.API_TIMEOUT_S if timeout is None else timeout,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> PaymentAPI:
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _auth_headers(self) -> dict[str, str]:
        if looks_like_jwt(self.token):
            return {"Authorization": f"Bearer {self.token}"}
        if self.token:
            logger.warning("Ignoring API token with an invalid format")
        return {}

    async def _refresh_tokens(self) -> bool:
        if not looks_like_jwt(self.refresh_token):
            return False
        try:
            resp = await self._client.post(
                "/auth/refresh-token", json={"refreshToken": self.refresh_token}
            )
            tokens = resp.json().get("tokens") if resp.is_success else None
        except (httpx.HTTPError, ValueError, AttributeError) as exc:
            logger.warning("Token refresh failed: %s", exc)
            return False
        if not isinstance(tokens, dict):
            logger.warning("Token refresh rejected: HTTP %d", resp.status_code)
            return False
        access, refresh = tokens.get("accessToken"), tokens.get("refreshToken")
        if not access or not refresh:
            return False
        self.token, self.refresh_token = access, refresh
        logger.info("Refreshed API access token")
        return True

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self._client.request(
                method, path, headers=self._auth_headers(), **kwargs
            )
            if resp.status_code == 401 and await self._refresh_tokens():
                resp = await self._client.request(
                    method, path, headers=self._auth_headers(), **kwargs
                )
        except httpx.TimeoutException as exc:
            raise FetchTimeoutError(f"Request timeout: {exc}") from exc
        except httpx.TransportError as exc:
            raise NetworkTransportError(f"Network request failed: {exc}") from exc
        _raise_for_status(resp)
        return resp

    async def get_payment(self, payment_id: str) -> Payment:
        resp = await self._request("GET", _payment_path(payment_id))
        try:
            data = resp.json()
        except ValueError as exc:
            raise ParseError(f"Malformed payment response: {exc}") from exc
        if not data:
            raise NotFoundError("Payment not found")
        if not isinstance(data, dict):
            raise ParseError(f"Unexpected payment payload: {type(data).__name__}")
        return data  # type: ignore[return-value]

    async def generate_receipt(self, payment_id: str) -> bytes:
        """Download the PDF receipt for a payment."""
        resp = await self._request("GET", _payment_path(payment_id, "/receipt"))
        return resp.content
