"""Asterisk ARI Client - PBX control plane for the bridged call leg.

Allocates and tears down the Asterisk resources behind a bridged call:
- a channel dialling the configured SIP endpoint into the Stasis app
- a mixing bridge
- continueInDialplan to join the channel to the bridge

Every request carries the short-lived API key returned by /apiKey. When ARI
rejects the key the client re-authenticates once and repeats the request;
a second rejection fails the operation with TelephonyUnavailableError.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import httpx

from webphone.config.constants import RELAY
from webphone.config.settings import get_settings
from webphone.exceptions import (
    MissingConfigError,
    TelephonyAuthError,
    TelephonyError,
    TelephonyUnavailableError,
)
from webphone.observability.logging import TelephonyLogger
from webphone.observability.metrics import (
    record_release_failure,
    record_telephony_operation,
)

AUTH_REJECTED_STATUSES = frozenset({401, 403})


@dataclass
class AriConfig:
    """Configuration for the ARI client."""

    base_url: str = "http://localhost:8088/ari"
    username: str = ""
    password: str = ""
    app: str = RELAY.ARI_APP
    app_args: str = RELAY.ARI_APP_ARGS
    timeout_s: float = RELAY.ARI_TIMEOUT_S


class AriClient:
    """Telephony control client for Asterisk ARI.

    Usage:
        client = AriClient()
        await client.start()

        channel_id = await client.allocate_channel("PJSIP/1001")
        bridge_id = await client.allocate_bridge()
        await client.attach_channel_to_bridge(channel_id, bridge_id)

        # On hangup; never raises
        await client.release(channel_id, bridge_id)

        await client.stop()
    """

    def __init__(
        self,
        config: AriConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if config is None:
            settings = get_settings()
            if not settings.ari_username or not settings.ari_password:
                raise MissingConfigError(
                    "ARI_USERNAME/ARI_PASSWORD",
                    "required when telephony is enabled",
                )
            config = AriConfig(
                base_url=settings.ari_base_url,
                username=settings.ari_username,
                password=settings.ari_password,
                app=settings.ari_app,
                app_args=settings.ari_app_args,
                timeout_s=settings.ari_timeout_s,
            )

        self._config = config
        self._base_url = config.base_url.rstrip("/")
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._api_key: str | None = None
        self._log = TelephonyLogger()

    @property
    def is_running(self) -> bool:
        """Whether the HTTP client is open."""
        return self._client is not None

    async def start(self) -> None:
        """Open the shared HTTP client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._config.timeout_s,
            transport=self._transport,
        )

    async def stop(self) -> None:
        """Close the HTTP client and forget the credential."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._api_key = None

    # -------------------------------------------------------------------------
    # Control-plane operations
    # -------------------------------------------------------------------------

    async def authenticate(self) -> str:
        """Obtain a fresh API key using HTTP Basic credentials.

        Raises:
            TelephonyAuthError: ARI rejected the username/password
            TelephonyUnavailableError: Request failed or returned no key
        """
        client = self._require_client("authenticate")
        started = time.perf_counter()
        try:
            resp = await client.post(
                "/apiKey",
                json={},
                auth=(self._config.username, self._config.password),
            )
        except httpx.HTTPError as e:
            record_telephony_operation("authenticate", "error")
            raise TelephonyUnavailableError("authenticate", str(e)) from e

        if resp.status_code in AUTH_REJECTED_STATUSES:
            record_telephony_operation("authenticate", "error")
            raise TelephonyAuthError("authenticate", resp.status_code)
        if resp.is_error:
            record_telephony_operation("authenticate", "error")
            raise TelephonyUnavailableError(
                "authenticate", "unexpected status", status_code=resp.status_code
            )

        api_key = self._json_field(resp, "apiKey", "authenticate")
        record_telephony_operation("authenticate", "ok", time.perf_counter() - started)
        self._api_key = api_key
        return api_key

    async def allocate_channel(self, endpoint_ref: str) -> str:
        """Create a channel dialling endpoint_ref into the Stasis app.

        Returns:
            ARI channel id
        """
        resp = await self._request(
            "allocate_channel",
            "POST",
            "/channels",
            json={
                "endpoint": endpoint_ref,
                "app": self._config.app,
                "appArgs": self._config.app_args,
            },
        )
        channel_id = self._json_field(resp, "id", "allocate_channel")
        self._log.resource_allocated("channel", channel_id)
        return channel_id

    async def allocate_bridge(self) -> str:
        """Create a mixing bridge.

        Returns:
            ARI bridge id
        """
        resp = await self._request("allocate_bridge", "POST", "/bridges", json={})
        bridge_id = self._json_field(resp, "id", "allocate_bridge")
        self._log.resource_allocated("bridge", bridge_id)
        return bridge_id

    async def attach_channel_to_bridge(self, channel_id: str, bridge_id: str) -> None:
        """Continue the channel in the dialplan into the bridge app."""
        await self._request(
            "attach_channel",
            "POST",
            f"/channels/{channel_id}/continueInDialplan",
            json={
                "app": RELAY.ARI_BRIDGE_APP,
                "appArgs": f"{RELAY.ARI_BRIDGE_APP_ARGS},{bridge_id}",
            },
        )

    async def release(
        self,
        channel_id: str | None = None,
        bridge_id: str | None = None,
    ) -> None:
        """Best-effort teardown of a call's PBX resources.

        Steps run in order and each failure is logged without stopping the
        next one, so a failed channel removal never leaks the bridge:
        1. remove the channel from the bridge (both ids present)
        2. destroy the bridge (bridge id present)
        3. hang up an orphan channel (channel id without a bridge)

        Never raises.
        """
        if channel_id and bridge_id:
            try:
                await self._request(
                    "remove_channel",
                    "DELETE",
                    f"/bridges/{bridge_id}/removeChannel",
                    json={"channel": channel_id},
                )
            except TelephonyError as e:
                record_release_failure("remove_channel")
                self._log.release_step_failed(
                    "remove_channel", str(e), channel_id=channel_id, bridge_id=bridge_id
                )

        if bridge_id:
            try:
                await self._request(
                    "destroy_bridge",
                    "POST",
                    f"/bridges/{bridge_id}/destroy",
                    json={},
                )
            except TelephonyError as e:
                record_release_failure("destroy_bridge")
                self._log.release_step_failed("destroy_bridge", str(e), bridge_id=bridge_id)

        elif channel_id:
            try:
                await self._request("hangup_channel", "DELETE", f"/channels/{channel_id}")
            except TelephonyError as e:
                record_release_failure("hangup_channel")
                self._log.release_step_failed("hangup_channel", str(e), channel_id=channel_id)

        if channel_id or bridge_id:
            self._log.released(channel_id, bridge_id)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send an authorized request, re-authenticating once on rejection.

        Raises:
            TelephonyUnavailableError: Request failed, or auth failed twice
        """
        client = self._require_client(operation)

        for attempt in (1, 2):
            started = time.perf_counter()
            try:
                if self._api_key is None:
                    await self.authenticate()
                resp = await client.request(
                    method,
                    path,
                    json=json,
                    headers={"Authorization": f"Basic {self._api_key}"},
                )
                if resp.status_code in AUTH_REJECTED_STATUSES:
                    raise TelephonyAuthError(operation, resp.status_code)
            except TelephonyAuthError as e:
                self._api_key = None
                if attempt == 2:
                    record_telephony_operation(operation, "error")
                    self._log.operation_failed(operation, str(e))
                    raise TelephonyUnavailableError(
                        operation, "authentication rejected", status_code=e.status_code
                    ) from e
                record_telephony_operation(operation, "reauth")
                self._log.reauthenticating(operation, e.status_code)
                continue
            except TelephonyUnavailableError as e:
                self._log.operation_failed(operation, str(e))
                raise
            except httpx.HTTPError as e:
                record_telephony_operation(operation, "error")
                self._log.operation_failed(operation, str(e))
                raise TelephonyUnavailableError(operation, str(e)) from e

            if resp.is_error:
                record_telephony_operation(operation, "error")
                self._log.operation_failed(operation, f"status {resp.status_code}")
                raise TelephonyUnavailableError(
                    operation, "unexpected status", status_code=resp.status_code
                )

            record_telephony_operation(operation, "ok", time.perf_counter() - started)
            return resp

        # Loop always returns or raises
        raise TelephonyUnavailableError(operation, "retry exhausted")

    def _require_client(self, operation: str) -> httpx.AsyncClient:
        if self._client is None:
            raise TelephonyUnavailableError(operation, "client not started")
        return self._client

    @staticmethod
    def _json_field(resp: httpx.Response, field: str, operation: str) -> str:
        try:
            value = resp.json()[field]
        except (ValueError, KeyError, TypeError) as e:
            raise TelephonyUnavailableError(
                operation, f"response missing '{field}'", status_code=resp.status_code
            ) from e
        if not value:
            raise TelephonyUnavailableError(
                operation, f"empty '{field}'", status_code=resp.status_code
            )
        return str(value)


def create_ari_client(config: AriConfig | None = None) -> AriClient:
    """Create ARI client instance.

    Args:
        config: Optional configuration (read from settings if omitted)

    Returns:
        AriClient instance
    """
    return AriClient(config)
