"""Command that serves live BTC prices over a websocket on port 3000."""

from __future__ import annotations

import asyncio
import logging
import os
import resource
import signal
from datetime import timedelta
from typing import Optional, Sequence, Tuple

import aiohttp
from aiohttp import web

from btcticker.handler import Handler
from btcticker.hub import Hub
from btcticker.memory import InMemoryDB
from btcticker.provider import BTCPrice, BTCPriceFetcher, CoinDesk, PriceError

logger = logging.getLogger(__name__)

BASE_URL = "https://min-api.cryptocompare.com"
PORT = 3000
POLLING_INTERVAL = timedelta(seconds=5)
RETRY_COUNT = 3


class MissingEnvironmentError(KeyError):
    """A required environment variable is not set."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


def get_env(key: str) -> str:
    """Return the value of environment variable ``key``; raise if it is unset."""
    try:
        return os.environ[key]
    except KeyError:
        raise MissingEnvironmentError(f"Environment variable not found: {key}") from None


def raise_file_limit() -> Tuple[int, int]:
    """Raise the soft limit on open files to the hard limit and return both."""
    _, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    resource.setrlimit(resource.RLIMIT_NOFILE, (hard, hard))
    return hard, hard


@web.middleware
async def _require_upgrade(request: web.Request, handler) -> web.StreamResponse:
    if request.path == "/ws" or request.path.startswith("/ws/"):
        tokens = {t.strip().lower() for t in request.headers.get("Connection", "").split(",")}
        if "upgrade" not in tokens or request.headers.get("Upgrade", "").lower() != "websocket":
            return web.Response(status=426, text="Upgrade Required")
    return await handler(request)


def create_app(handler: Handler) -> web.Application:
    """Build the web application with the websocket route at ``/ws``."""
    app = web.Application(middlewares=[_require_upgrade])
    app.router.add_get("/ws", handler.handle)
    return app


class _RetryingSource:
    """Retries a price source with growing waits of 2 to 10 seconds."""

    def __init__(self, api: CoinDesk) -> None:
        self._api = api

    async def get_price(self) -> BTCPrice:
        for attempt in range(RETRY_COUNT):
            try:
                return await self._api.get_price()
            except PriceError:
                await asyncio.sleep(min(2 * 2**attempt, 10))
        return await self._api.get_price()


async def _serve(token: str) -> None:
    async with aiohttp.ClientSession(
        base_url=BASE_URL,
        headers={"Authorization": f"Apikey {token}"},
        connector=aiohttp.TCPConnector(ssl=False),
        timeout=aiohttp.ClientTimeout(total=POLLING_INTERVAL.total_seconds()),
    ) as session:
        db: InMemoryDB[BTCPrice] = InMemoryDB()
        hub = Hub()
        fetcher = BTCPriceFetcher(db, _RetryingSource(CoinDesk(session)), hub)
        tasks = [
            asyncio.create_task(hub.run()),
            asyncio.create_task(fetcher.start(POLLING_INTERVAL)),
        ]
        runner = web.AppRunner(create_app(Handler(db, hub)))
        await runner.setup()
        try:
            await web.TCPSite(runner, port=PORT).start()
        except OSError as exc:
            logger.error("%s", exc)

        loop = asyncio.get_running_loop()
        received: "asyncio.Future[signal.Signals]" = loop.create_future()
        watched = (signal.SIGHUP, signal.SIGINT, signal.SIGTERM, signal.SIGQUIT)
        for sig in watched:
            loop.add_signal_handler(sig, lambda s=sig: received.done() or received.set_result(s))
        try:
            logger.info("signal %s received", (await received).name)
        finally:
            for sig in watched:
                loop.remove_signal_handler(sig)
            try:
                await runner.cleanup()
            except Exception as exc:  # noqa: BLE001 - shutdown errors are only reported
                logger.error("shutdown: %s", exc)
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            db.stop()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the price server until a termination signal arrives; the API key comes from TOKEN."""
    logging.basicConfig(level=logging.INFO)
    try:
        token = get_env("TOKEN")
        raise_file_limit()
    except (MissingEnvironmentError, OSError, ValueError) as exc:
        logger.critical("%s", exc)
        return 1

    asyncio.run(_serve(token))
    return 0