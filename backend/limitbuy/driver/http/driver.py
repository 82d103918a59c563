"""HttpDriver -- Driver implementation over a venue's JSON HTTP API.

Endpoints (relative to the configured base URL):
    GET  /price                      -> {"price": "3.10"}
    POST /purchase/amount            {"amount": "300"} -> {"accepted": true}
    POST /purchase/confirm-payment   -> {"accepted": true}
    POST /purchase/confirm           -> {"accepted": true}
    GET  /orders/latest              -> {"order_id": "1234", "url": "..."} or 404

A stage response of {"accepted": false, "reason": "..."} or any 4xx is
an explicit refusal. Request timeouts map to DriverTimeoutError.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Self

import httpx
import structlog

from limitbuy.config import DriverConfig
from limitbuy.driver.errors import (
    DriverConnectionError,
    DriverError,
    DriverRejectedError,
    DriverTimeoutError,
)
from limitbuy.orders.types import ExternalReference

logger = structlog.get_logger()


class HttpDriver:
    """Driver backed by httpx.AsyncClient.

    Use as ``async with HttpDriver(config) as driver``. Pass `transport`
    to route requests somewhere other than the network (tests).
    """

    def __init__(
        self,
        config: DriverConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Open the HTTP client."""
        if self._client is not None:
            logger.warning("http_driver_already_connected")
            return
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=self._config.request_timeout_seconds,
            transport=self._transport,
        )
        logger.info("http_driver_connected", base_url=self._config.base_url)

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client is None:
            return
        await self._client.aclose()
        self._client = None
        logger.info("http_driver_disconnected")

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        await self.disconnect()

    async def read_price(self) -> Decimal | None:
        """Current price. Any transport or format problem gives None."""
        try:
            response = await self._request("GET", "/price")
        except DriverError as exc:
            logger.warning("price_read_failed", error=str(exc))
            return None

        if response.status_code != 200:
            logger.warning("price_read_failed", status_code=response.status_code)
            return None

        try:
            price = Decimal(str(response.json()["price"]))
        except (ValueError, KeyError, TypeError, InvalidOperation):
            logger.warning("price_unparseable", body=response.text[:200])
            return None

        if not price.is_finite() or price <= 0:
            logger.warning("price_out_of_range", price=str(price))
            return None
        return price

    async def submit_amount(self, amount: Decimal) -> None:
        await self._stage(1, "/purchase/amount", {"amount": str(amount)})

    async def confirm_stage2(self) -> None:
        await self._stage(2, "/purchase/confirm-payment", {})

    async def confirm_stage3(self) -> None:
        await self._stage(3, "/purchase/confirm", {})

    async def try_get_last_order_reference(self) -> ExternalReference | None:
        try:
            response = await self._request("GET", "/orders/latest")
        except DriverError as exc:
            logger.warning("order_reference_unavailable", error=str(exc))
            return None

        if response.status_code != 200:
            logger.info("order_reference_not_found", status_code=response.status_code)
            return None

        try:
            data = response.json()
            return ExternalReference(order_id=str(data["order_id"]), url=data.get("url"))
        except (ValueError, KeyError, TypeError):
            logger.warning("order_reference_unparseable", body=response.text[:200])
            return None

    # --- Internal helpers ---

    async def _stage(self, stage: int, path: str, payload: dict[str, Any]) -> None:
        response = await self._request("POST", path, json=payload)

        if 400 <= response.status_code < 500:
            raise DriverRejectedError(
                f"stage {stage} refused with HTTP {response.status_code}",
                reason=response.text[:200],
            )
        if response.status_code >= 500:
            raise DriverError(f"stage {stage} failed with HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as exc:
            raise DriverError(f"stage {stage} returned a non-JSON body") from exc

        if not body.get("accepted", False):
            reason = str(body.get("reason", ""))
            raise DriverRejectedError(f"stage {stage} refused: {reason}", reason=reason)

        logger.debug("stage_accepted", stage=stage)

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        if self._client is None:
            raise DriverConnectionError("HttpDriver.connect() was not called")
        try:
            return await self._client.request(method, path, json=json)
        except httpx.TimeoutException as exc:
            raise DriverTimeoutError(f"{method} {path} timed out") from exc
        except httpx.TransportError as exc:
            raise DriverConnectionError(f"{method} {path} failed: {exc}") from exc
