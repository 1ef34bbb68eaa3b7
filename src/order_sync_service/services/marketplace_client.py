"""Signed async HTTP client for the marketplace Open API.

Builds the common query parameters, signs every request through
``SignatureEngine`` and turns responses into either a decoded body or a typed
error. Transient failures are retried with exponential backoff; each attempt is
re-signed with a fresh timestamp.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import urlencode

import httpx
import structlog

from order_sync_service.config import MarketplaceConfig
from order_sync_service.errors import MarketplaceApiError, TransportError
from order_sync_service.logging_config import mask_token
from order_sync_service.services.signature import CallClass, RequestContext, SignatureEngine
from shared.constants import (
    AUTH_PARTNER_PATH,
    ORDER_DETAIL_PATH,
    ORDER_LIST_PATH,
    TOKEN_GET_PATH,
    TOKEN_REFRESH_PATH,
)

logger = structlog.get_logger()

ContextFactory = Callable[[int], RequestContext]


class MarketplaceClient:
    """Client for the auth and order endpoints of the marketplace."""

    def __init__(
        self,
        config: MarketplaceConfig,
        http_client: httpx.AsyncClient,
        signer: SignatureEngine | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.http = http_client
        self.signer = signer or SignatureEngine(config.partner_key)
        self._clock = clock
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # Auth endpoints
    # -------------------------------------------------------------------------

    def authorization_url(self, redirect_url: str | None = None) -> str:
        """Signed link a seller opens to authorize the partner app for a shop."""
        timestamp = int(self._clock())
        context = RequestContext(
            AUTH_PARTNER_PATH, self.config.partner_id, timestamp, CallClass.PUBLIC
        )
        query = urlencode(
            {
                "partner_id": self.config.partner_id,
                "redirect": redirect_url or self.config.redirect_url,
                "timestamp": timestamp,
                "sign": self.signer.sign(context),
            }
        )
        return f"{self.config.api_host}{AUTH_PARTNER_PATH}?{query}"

    async def exchange_code(self, code: str, shop_id: int) -> dict[str, Any]:
        """Exchange an authorization code for an access/refresh token pair."""
        body = await self._request(
            "POST",
            TOKEN_GET_PATH,
            lambda ts: RequestContext.for_auth(
                TOKEN_GET_PATH, self.config.partner_id, ts, code
            ),
            json={"code": code, "shop_id": shop_id, "partner_id": self.config.partner_id},
            retry_transport=False,
        )
        return _unwrap(body)

    async def refresh_access_token(self, refresh_token: str, shop_id: int) -> dict[str, Any]:
        """Trade a refresh token for a new access/refresh token pair."""
        body = await self._request(
            "POST",
            TOKEN_REFRESH_PATH,
            lambda ts: RequestContext.for_auth(
                TOKEN_REFRESH_PATH, self.config.partner_id, ts, refresh_token
            ),
            json={
                "refresh_token": refresh_token,
                "shop_id": shop_id,
                "partner_id": self.config.partner_id,
            },
            retry_transport=False,
        )
        return _unwrap(body)

    # -------------------------------------------------------------------------
    # Order endpoints
    # -------------------------------------------------------------------------

    async def get_order_list(
        self,
        access_token: str,
        shop_id: int,
        *,
        time_from: int,
        time_to: int,
        time_range_field: str = "create_time",
        page_size: int = 100,
        cursor: str = "",
        order_status: str | None = None,
    ) -> dict[str, Any]:
        """Fetch one page of order identifiers.

        Returns the ``response`` object: ``order_list``, ``more`` and
        ``next_cursor``.
        """
        params: dict[str, Any] = {
            "time_range_field": time_range_field,
            "time_from": time_from,
            "time_to": time_to,
            "page_size": page_size,
            "cursor": cursor,
        }
        if order_status:
            params["order_status"] = order_status
        body = await self._shop_request(ORDER_LIST_PATH, access_token, shop_id, params)
        return _unwrap(body)

    async def get_order_detail(
        self,
        access_token: str,
        shop_id: int,
        order_sn_list: list[str],
        optional_fields: str = "",
    ) -> list[dict[str, Any]]:
        """Fetch full details for a batch of order identifiers."""
        params: dict[str, Any] = {"order_sn_list": ",".join(order_sn_list)}
        if optional_fields:
            params["response_optional_fields"] = optional_fields
        body = await self._shop_request(ORDER_DETAIL_PATH, access_token, shop_id, params)
        return list(_unwrap(body).get("order_list") or [])

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _shop_request(
        self, path: str, access_token: str, shop_id: int, params: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._request(
            "GET",
            path,
            lambda ts: RequestContext.for_shop(
                path, self.config.partner_id, ts, access_token, shop_id
            ),
            params=params,
        )

    async def _request(
        self,
        method: str,
        path: str,
        context_factory: ContextFactory,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        retry_transport: bool = True,
    ) -> dict[str, Any]:
        attempt = 0
        while True:
            try:
                return await self._send_once(method, path, context_factory, params, json)
            except TransportError as e:
                if not retry_transport or attempt >= self.config.max_retries:
                    raise
                error: Exception = e
            except MarketplaceApiError as e:
                if not e.retryable or attempt >= self.config.max_retries:
                    raise
                error = e

            delay = self.config.retry_backoff_seconds * (2**attempt)
            attempt += 1
            logger.warning(
                "Retrying marketplace request",
                path=path,
                attempt=attempt,
                delay_seconds=delay,
                error=str(error),
            )
            await self._sleep(delay)

    async def _send_once(
        self,
        method: str,
        path: str,
        context_factory: ContextFactory,
        params: dict[str, Any] | None,
        json: dict[str, Any] | None,
    ) -> dict[str, Any]:
        context = context_factory(int(self._clock()))
        query: dict[str, Any] = {
            "partner_id": context.partner_id,
            "timestamp": context.timestamp,
            "sign": self.signer.sign(context),
        }
        if context.call_class is CallClass.SHOP:
            query["access_token"] = context.access_token
            query["shop_id"] = context.shop_id
        if params:
            query.update(params)

        logger.debug(
            "Marketplace request",
            method=method,
            path=path,
            shop_id=context.shop_id,
            access_token=mask_token(context.access_token),
        )

        try:
            response = await self.http.request(
                method,
                f"{self.config.api_host}{path}",
                params=query,
                json=json,
                timeout=self.config.timeout_seconds,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Timeout calling {path}: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Transport failure calling {path}: {e}") from e

        return self._decode(path, response)

    def _decode(self, path: str, response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict) and body.get("error"):
            code = str(body["error"])
            raise MarketplaceApiError(
                code=code,
                message=str(body.get("message") or ""),
                request_id=body.get("request_id"),
                http_status=response.status_code,
                retryable=code in self.config.transient_error_codes,
            )

        if response.status_code >= 400 or not isinstance(body, dict):
            status = response.status_code
            raise MarketplaceApiError(
                code=f"http_{status}",
                message=f"Unexpected response from {path}",
                http_status=status,
                retryable=status == 429 or status >= 500,
            )
        return body


def _unwrap(body: dict[str, Any]) -> dict[str, Any]:
    """Return the ``response`` envelope when present, else the body itself."""
    inner = body.get("response")
    return inner if isinstance(inner, dict) else body
