"""Fetching the BTC/USD price and publishing it to a store and a broadcaster."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional, Union

import aiohttp

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class PriceError(Exception):
    """Raised when the current price cannot be obtained."""


def _unix_nanos(moment: datetime) -> int:
    return ((moment.astimezone(timezone.utc) - _EPOCH) // timedelta(microseconds=1)) * 1000


def _to_decimal(value: Any) -> Decimal:
    """Decode a JSON number or numeric string; null means zero."""
    if value is None:
        return Decimal(0)
    if isinstance(value, (int, str, Decimal)) and not isinstance(value, bool):
        try:
            result = Decimal(value)
        except InvalidOperation:
            result = None
        if result is not None and result.is_finite():
            return result
    raise ValueError(f"can't convert {value!r} to decimal")


def _load_object(data: Union[bytes, str]) -> dict:
    decoded = json.loads(data, parse_float=Decimal)
    if not isinstance(decoded, dict):
        raise ValueError("expected a JSON object")
    return decoded


@dataclass(frozen=True)
class BTCPrice:
    """A price in US dollars and the time it was taken, in Unix nanoseconds."""

    price_usd: Decimal
    timestamp: int

    def to_json(self) -> bytes:
        """Encode as ``{"PriceUSD":"<decimal>","Timestamp":<int>}``."""
        price = format(self.price_usd.normalize(), "f")
        return json.dumps({"PriceUSD": price, "Timestamp": self.timestamp}, separators=(",", ":")).encode()

    @classmethod
    def from_json(cls, data: Union[bytes, str]) -> "BTCPrice":
        """Decode what :meth:`to_json` produces; the price may also be a number."""
        obj = _load_object(data)
        timestamp = obj.get("Timestamp", 0)
        if isinstance(timestamp, bool) or not isinstance(timestamp, int):
            raise ValueError(f"invalid timestamp: {timestamp!r}")
        return cls(price_usd=_to_decimal(obj.get("PriceUSD")), timestamp=timestamp)


class CoinDesk:
    """Client for the price endpoint, relative to the session's base URL."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._session = session
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def get_price(self) -> BTCPrice:
        """Fetch the current price; raises :class:`PriceError` on any failure."""
        try:
            async with self._session.get("/data/price", params={"fsym": "BTC", "tsyms": "USD"}) as response:
                status = response.status
                body = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise PriceError(f"couldn't determine btc price: {exc}") from exc

        if status >= 400:
            raise PriceError(f"unexpeected status code: {status}")

        try:
            obj = _load_object(body)
            usd = next((v for k, v in obj.items() if k.casefold() == "usd"), None)
            price_usd = _to_decimal(obj.get("USD", usd))
        except ValueError as exc:
            raise PriceError(f"failed to unmarshal response: {exc}") from exc

        return BTCPrice(price_usd=price_usd, timestamp=_unix_nanos(self._clock()))


class BTCPriceFetcher:
    """Polls a price source, stores each price and broadcasts it as JSON."""

    def __init__(self, store: Any, api: Any, broadcaster: Any) -> None:
        self.store = store
        self.api = api
        self.broadcaster = broadcaster

    async def poll_once(self) -> Optional[BTCPrice]:
        """Fetch one price; return it, or None if fetching failed."""
        try:
            price = await self.api.get_price()
        except PriceError as exc:
            logger.error("error fetching price: %s", exc)
            return None

        self.store.add(price)
        result = self.broadcaster.broadcast(price.to_json())
        if inspect.isawaitable(result):
            await result
        return price

    async def start(self, interval: timedelta) -> None:
        """Poll every ``interval`` until the task is cancelled."""
        seconds = interval.total_seconds()
        if seconds <= 0:
            raise ValueError("polling interval must be positive")
        while True:
            await asyncio.sleep(seconds)
            await self.poll_once()