"""Tests for Asterisk ARI Client.

Tests cover:
- API key authentication
- Channel/bridge allocation and attach requests
- Re-authentication on a rejected key
- Best-effort release
"""

import json

import httpx
import pytest
import pytest_asyncio

from webphone.exceptions import (
    MissingConfigError,
    TelephonyAuthError,
    TelephonyUnavailableError,
)
from webphone.telephony.ari_client import AriClient, AriConfig


class FakeAri:
    """Scripted ARI server for httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.keys = iter(["key-1", "key-2", "key-3"])
        self.valid_key: str | None = None
        self.reject_login = 0
        self.expire_once = False
        self.fail: dict[tuple[str, str], int] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/ari")
        key = (request.method, path)

        if path == "/apiKey":
            if self.reject_login:
                self.reject_login -= 1
                return httpx.Response(401)
            self.valid_key = next(self.keys)
            return httpx.Response(200, json={"apiKey": self.valid_key})

        if request.headers.get("Authorization") != f"Basic {self.valid_key}":
            return httpx.Response(401)
        if self.expire_once:
            self.expire_once = False
            return httpx.Response(401)
        if key in self.fail:
            return httpx.Response(self.fail[key])

        if key == ("POST", "/channels"):
            return httpx.Response(200, json={"id": "ch1"})
        if key == ("POST", "/bridges"):
            return httpx.Response(200, json={"id": "br1"})
        return httpx.Response(204)

    def calls(self) -> list[tuple[str, str]]:
        return [(r.method, r.url.path.removeprefix("/ari")) for r in self.requests]


@pytest.fixture
def ari() -> FakeAri:
    return FakeAri()


@pytest_asyncio.fixture
async def client(ari):
    config = AriConfig(base_url="http://pbx:8088/ari", username="asterisk", password="secret")
    ari_client = AriClient(config, transport=httpx.MockTransport(ari.handler))
    await ari_client.start()
    yield ari_client
    await ari_client.stop()


class TestConstruction:
    """Client construction."""

    def test_missing_credentials(self, monkeypatch):
        from webphone.config.settings import get_settings

        get_settings.cache_clear()
        monkeypatch.delenv("ARI_USERNAME", raising=False)
        monkeypatch.delenv("ARI_PASSWORD", raising=False)
        try:
            with pytest.raises(MissingConfigError):
                AriClient()
        finally:
            get_settings.cache_clear()

    @pytest.mark.asyncio
    async def test_start_stop(self, ari):
        ari_client = AriClient(
            AriConfig(username="u", password="p"),
            transport=httpx.MockTransport(ari.handler),
        )
        assert ari_client.is_running is False
        await ari_client.start()
        assert ari_client.is_running is True
        await ari_client.stop()
        assert ari_client.is_running is False

    @pytest.mark.asyncio
    async def test_not_started(self):
        ari_client = AriClient(AriConfig(username="u", password="p"))
        with pytest.raises(TelephonyUnavailableError):
            await ari_client.allocate_bridge()


class TestAuthentication:
    """API key handling."""

    @pytest.mark.asyncio
    async def test_authenticate_uses_basic_credentials(self, client, ari):
        key = await client.authenticate()
        assert key == "key-1"
        login = ari.requests[0]
        assert login.method == "POST"
        assert login.headers["Authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_authenticate_rejected(self, client, ari):
        ari.reject_login = 1
        with pytest.raises(TelephonyAuthError):
            await client.authenticate()

    @pytest.mark.asyncio
    async def test_key_reused_across_requests(self, client, ari):
        await client.allocate_channel("PJSIP/1001")
        await client.allocate_bridge()
        assert ari.calls().count(("POST", "/apiKey")) == 1

    @pytest.mark.asyncio
    async def test_expired_key_reauthenticates_once(self, client, ari):
        await client.authenticate()
        ari.expire_once = True

        bridge_id = await client.allocate_bridge()

        assert bridge_id == "br1"
        assert ari.calls() == [
            ("POST", "/apiKey"),
            ("POST", "/bridges"),
            ("POST", "/apiKey"),
            ("POST", "/bridges"),
        ]
        assert ari.requests[-1].headers["Authorization"] == "Basic key-2"

    @pytest.mark.asyncio
    async def test_auth_rejected_twice_fails_without_bridge(self, client, ari):
        ari.reject_login = 2

        with pytest.raises(TelephonyUnavailableError) as exc_info:
            await client.allocate_bridge()

        assert exc_info.value.operation == "allocate_bridge"
        assert ("POST", "/bridges") not in ari.calls()


class TestAllocation:
    """Channel and bridge allocation."""

    @pytest.mark.asyncio
    async def test_allocate_channel_request(self, client, ari):
        channel_id = await client.allocate_channel("PJSIP/1001")

        assert channel_id == "ch1"
        body = json.loads(ari.requests[-1].content)
        assert body == {"endpoint": "PJSIP/1001", "app": "webphone", "appArgs": "dialed"}

    @pytest.mark.asyncio
    async def test_attach_continues_in_dialplan(self, client, ari):
        await client.attach_channel_to_bridge("ch1", "br1")

        request = ari.requests[-1]
        assert request.url.path == "/ari/channels/ch1/continueInDialplan"
        assert json.loads(request.content) == {"app": "bridge", "appArgs": "both_bridges,br1"}

    @pytest.mark.asyncio
    async def test_server_error(self, client, ari):
        ari.fail[("POST", "/bridges")] = 500
        with pytest.raises(TelephonyUnavailableError) as exc_info:
            await client.allocate_bridge()
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_network_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        ari_client = AriClient(
            AriConfig(username="u", password="p"),
            transport=httpx.MockTransport(refuse),
        )
        await ari_client.start()
        try:
            with pytest.raises(TelephonyUnavailableError):
                await ari_client.allocate_channel("PJSIP/1001")
        finally:
            await ari_client.stop()

    @pytest.mark.asyncio
    async def test_missing_id_in_response(self):
        def no_id(request):
            if request.url.path.endswith("/apiKey"):
                return httpx.Response(200, json={"apiKey": "k"})
            return httpx.Response(200, json={})

        ari_client = AriClient(
            AriConfig(username="u", password="p"),
            transport=httpx.MockTransport(no_id),
        )
        await ari_client.start()
        try:
            with pytest.raises(TelephonyUnavailableError, match="id"):
                await ari_client.allocate_bridge()
        finally:
            await ari_client.stop()


class TestRelease:
    """Best-effort teardown."""

    @pytest.mark.asyncio
    async def test_release_order(self, client, ari):
        await client.release("ch1", "br1")

        assert ari.calls()[1:] == [
            ("DELETE", "/bridges/br1/removeChannel"),
            ("POST", "/bridges/br1/destroy"),
        ]
        assert json.loads(ari.requests[1].content) == {"channel": "ch1"}

    @pytest.mark.asyncio
    async def test_destroy_attempted_when_remove_fails(self, client, ari):
        ari.fail[("DELETE", "/bridges/br1/removeChannel")] = 500

        await client.release("ch1", "br1")

        assert ("POST", "/bridges/br1/destroy") in ari.calls()

    @pytest.mark.asyncio
    async def test_orphan_channel_hung_up(self, client, ari):
        await client.release("ch1", None)
        assert ari.calls()[1:] == [("DELETE", "/channels/ch1")]

    @pytest.mark.asyncio
    async def test_release_never_raises(self, client, ari):
        ari.reject_login = 10
        await client.release("ch1", "br1")

    @pytest.mark.asyncio
    async def test_release_nothing(self, client, ari):
        await client.release()
        assert ari.requests == []
