# btcticker

A small WebSocket server built on aiohttp. It polls the BTC/USD price every
5 seconds, keeps recent prices in memory for ten minutes and pushes each new
price to every connected client.

## Installation

```
pip install .
```

## Running

The server reads the API token for the price source from the `TOKEN`
environment variable:

```
TOKEN=token btcticker
```

If `TOKEN` is not set, the command logs the problem and exits with status 1.
On start it raises the soft limit on open files to the hard limit.

The server listens on port 3000 and fetches the price from
`https://min-api.cryptocompare.com/data/price?fsym=BTC&tsyms=USD`, sending
`Authorization: Apikey <TOKEN>`. TLS certificates are not verified. Each
request times out after 5 seconds; a failed fetch is retried up to three
times with waits of 2, 4 and 8 seconds, and a fetch that still fails is
logged and skipped.

The server runs until it receives SIGINT (Ctrl-C), SIGTERM, SIGHUP or
SIGQUIT, then shuts down.

## Connecting

Open a WebSocket to `ws://localhost:3000/ws`. Each message is a JSON text
message holding the price as a decimal string and the time it was fetched in
nanoseconds since the Unix epoch:

```json
{"PriceUSD":"64123.5","Timestamp":1719742800000000000}
```

To replay stored prices first, pass `since` with a nanosecond timestamp:

```
ws://localhost:3000/ws?since=1719742800000000000
```

Every stored, unexpired price with a timestamp at or after `since` is sent
before live updates begin. A missing or empty `since`, or `since=0`, sends no
stored prices. If `since` is not a 64-bit integer, the server sends an error
message and closes the connection:

```json
{"details":{"query.since":"must be a valid integer"},"error":true,"message":"Invalid parameters provided"}
```

A plain HTTP request to `/ws` that is not a WebSocket upgrade gets
`426 Upgrade Required`. Messages sent by the client are read and ignored.

## Using the parts

- `btcticker.memory.InMemoryDB(size=1024, ttl=timedelta(minutes=10),
  interval=timedelta(minutes=10), clock=None)` stores items that expire `ttl`
  after `add`. `query(filter_fn=None)` returns unexpired items in insertion
  order, filtered when a function is given. A background thread calls
  `cleanup()` every `interval`; `stop()` ends it, and the store can be used as
  a context manager that stops it on exit.
- `btcticker.provider.BTCPrice` holds `price_usd` (a `Decimal`) and
  `timestamp`; `to_json()` and `BTCPrice.from_json(data)` convert to and from
  the message format above.
- `btcticker.provider.CoinDesk(session, clock=None)` fetches the price with
  an `aiohttp.ClientSession` whose `base_url` points at the price service.
  `await get_price()` raises `PriceError` on a network failure, an HTTP status
  of 400 or above, or a body it cannot decode.
- `btcticker.provider.BTCPriceFetcher(store, api, broadcaster)` fetches a
  price with `await poll_once()`, adds it to `store` and passes its JSON to
  `broadcaster.broadcast` (plain or async). `await start(interval)` waits
  `interval` and polls, over and over, until cancelled.
- `btcticker.hub.Hub` keeps track of connections. `register`, `unregister`
  and `len(hub)` manage them; `await broadcast(message)` hands a message to
  the `await run()` loop, which sends it to every connection and drops any
  connection whose write fails.
- `btcticker.handler.Handler(db, hub)` serves one WebSocket per call of
  `await handle(request)`. `parse_params(query)` returns a `Params` with
  `since`, or raises `InvalidParamError`, whose `details` maps the parameter
  to the problem.
- `btcticker.app.create_app(handler)` builds the aiohttp application with
  the route at `/ws`; `get_env`, `raise_file_limit` and `main` are what the
  `btcticker` command uses.

```python
import asyncio
from datetime import timedelta

import aiohttp
from aiohttp import web

from btcticker.app import create_app
from btcticker.handler import Handler
from btcticker.hub import Hub
from btcticker.memory import InMemoryDB
from btcticker.provider import BTCPriceFetcher, CoinDesk


async def serve():
    async with aiohttp.ClientSession(
        base_url="https://min-api.cryptocompare.com",
        headers={"Authorization": "Apikey token"},
    ) as session:
        with InMemoryDB() as db:
            hub = Hub()
            fetcher = BTCPriceFetcher(db, CoinDesk(session), hub)
            tasks = [
                asyncio.create_task(hub.run()),
                asyncio.create_task(fetcher.start(timedelta(seconds=5))),
            ]
            runner = web.AppRunner(create_app(Handler(db, hub)))
            await runner.setup()
            await web.TCPSite(runner, port=8080).start()
            try:
                await asyncio.Event().wait()
            finally:
                await runner.cleanup()
                for task in tasks:
                    task.cancel()


asyncio.run(serve())
```

## Limits

Prices are kept in memory only and are lost when the server stops. The port,
polling interval, retention time and price source of the `btcticker`
command are fixed and cannot be set from the command line. The command needs
a POSIX system.

## Tests

```
pip install .[test]
pytest
```