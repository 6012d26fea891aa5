import json
import resource
from unittest import mock

import pytest
from aiohttp.test_utils import TestClient, TestServer

from btcticker.app import MissingEnvironmentError, create_app, get_env, main, raise_file_limit
from btcticker.handler import Handler
from btcticker.hub import Hub


class _EmptyDB:
    def query(self, filter_fn):
        return []


def _app():
    return create_app(Handler(_EmptyDB(), Hub()))


def test_get_env_returns_value(monkeypatch):
    monkeypatch.setenv("BTCTICKER_SAMPLE", "token")
    assert get_env("BTCTICKER_SAMPLE") == "token"


def test_get_env_missing_raises(monkeypatch):
    monkeypatch.delenv("BTCTICKER_SAMPLE", raising=False)
    with pytest.raises(MissingEnvironmentError) as info:
        get_env("BTCTICKER_SAMPLE")
    assert str(info.value) == "Environment variable not found: BTCTICKER_SAMPLE"


def test_missing_env_error_is_key_error(monkeypatch):
    monkeypatch.delenv("BTCTICKER_SAMPLE", raising=False)
    with pytest.raises(KeyError):
        get_env("BTCTICKER_SAMPLE")


def test_raise_file_limit_sets_soft_to_hard():
    with mock.patch("btcticker.app.resource.getrlimit", return_value=(256, 4096)), mock.patch(
        "btcticker.app.resource.setrlimit"
    ) as setrlimit:
        result = raise_file_limit()
    assert result == (4096, 4096)
    setrlimit.assert_called_once_with(resource.RLIMIT_NOFILE, (4096, 4096))


def test_raise_file_limit_propagates_errors():
    with mock.patch("btcticker.app.resource.getrlimit", return_value=(256, 4096)), mock.patch(
        "btcticker.app.resource.setrlimit", side_effect=ValueError("not allowed")
    ):
        with pytest.raises(ValueError):
            raise_file_limit()


def test_main_without_token_fails(monkeypatch):
    monkeypatch.delenv("TOKEN", raising=False)
    assert main([]) == 1


@pytest.mark.asyncio
async def test_plain_request_to_ws_requires_upgrade():
    async with TestClient(TestServer(_app())) as client:
        response = await client.get("/ws")
        status = response.status
    assert status == 426


@pytest.mark.asyncio
async def test_unknown_path_not_found():
    async with TestClient(TestServer(_app())) as client:
        response = await client.get("/elsewhere")
        status = response.status
    assert status == 404


@pytest.mark.asyncio
async def test_websocket_route_serves_handler():
    async with TestClient(TestServer(_app())) as client:
        ws = await client.ws_connect("/ws?since=invalid")
        message = await ws.receive(timeout=5)
        await ws.close()
    payload = json.loads(message.data)
    assert payload["error"] is True
    assert payload["message"] == "Invalid parameters provided"