"""Websocket endpoint that replays stored prices and then streams new ones."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Protocol

import aiohttp
from aiohttp import web

from btcticker.hub import Hub
from btcticker.provider import BTCPrice

logger = logging.getLogger(__name__)

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class InvalidParamError(Exception):
    """A request parameter could not be understood."""

    def __init__(self, message: str, details: Optional[Dict[str, str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, str] = dict(details or {})

    def __str__(self) -> str:
        return self.message


class _InitialDataError(Exception):
    """Sending the stored prices to a new client failed."""


@dataclass(frozen=True)
class Params:
    """Query parameters of a websocket request."""

    since: int = 0


def _parse_int64(text: str) -> int:
    if not _INT_PATTERN.fullmatch(text):
        raise ValueError(f"invalid integer: {text!r}")
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"integer out of range: {text!r}")
    return value


def parse_params(query: Mapping[str, str]) -> Params:
    """Read ``since`` from ``query``; absent means 0."""
    since = query.get("since", "")
    if since == "":
        return Params(since=0)
    try:
        return Params(since=_parse_int64(since))
    except ValueError:
        raise InvalidParamError(
            "Invalid parameters provided",
            {"query.since": "must be a valid integer"},
        ) from None


class PriceQuery(Protocol):
    def query(self, filter_fn: Optional[Callable[[BTCPrice], bool]]) -> List[BTCPrice]: ...


class Handler:
    """Serves one websocket client per :meth:`handle` call."""

    def __init__(self, db: PriceQuery, hub: Hub) -> None:
        self.db = db
        self.hub = hub

    async def handle(self, request: web.Request) -> web.WebSocketResponse:
        """Upgrade ``request``, send prices since ``?since=`` and stream updates."""
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        try:
            try:
                params = parse_params(request.query)
                await self._send_initial_data(ws, params.since)
            except (InvalidParamError, _InitialDataError) as exc:
                await self._handle_err(ws, exc)
                return ws

            self.hub.register(ws)
            try:
                await self._read_messages(ws)
            finally:
                self.hub.unregister(ws)
        finally:
            try:
                await ws.close()
            except (OSError, RuntimeError, aiohttp.ClientError) as exc:
                logger.error("failed to close connection: %s", exc)
        return ws

    async def _read_messages(self, ws: web.WebSocketResponse) -> None:
        async for message in ws:
            if message.type == aiohttp.WSMsgType.ERROR:
                logger.error("failed to read message: %s", ws.exception())
                return
        logger.error("failed to read message: connection closed")

    async def _send_initial_data(self, ws: web.WebSocketResponse, since: int) -> None:
        if since == 0:
            return

        for item in self.db.query(lambda price: price.timestamp >= since):
            try:
                await ws.send_str(item.to_json().decode())
            except (OSError, RuntimeError, aiohttp.ClientError) as exc:
                logger.error("failed to write message: %s", exc)
                raise _InitialDataError(f"{exc}\nfailed to send item: {item}") from exc

    async def _handle_err(self, ws: web.WebSocketResponse, error: Exception) -> None:
        response: Dict[str, object] = {"error": True, "message": str(error)}
        if isinstance(error, InvalidParamError):
            response["details"] = error.details
        payload = json.dumps(response, sort_keys=True, separators=(",", ":"))
        try:
            await ws.send_str(payload)
        except (OSError, RuntimeError, aiohttp.ClientError) as exc:
            logger.error("failed to write message: %s", exc)