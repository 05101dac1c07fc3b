"""
Dual-transport light coordinator.

Owns the LAN and HTTP transports, merges what they discover into one set of
lights, and routes each control request to the light's preferred transport
with a single fallback to the other one.

Callers serialize their calls into one coordinator instance; it is not
meant to be driven from several tasks at once.
"""

import asyncio
from datetime import datetime
from typing import Callable, Iterable, Optional

from .config import Config
from .constants import (
    ERROR_CONNECTION_REFUSED,
    ERROR_NETWORK,
    ERROR_NO_LIGHTS,
    ERROR_TIMEOUT,
    SOURCE_HTTP,
    SOURCE_LAN,
    SOURCE_PRIORITY,
)
from .errors import (
    ControlFailed,
    DeviceNotFound,
    LifxCtlError,
    NoTransportAvailable,
    TransportError,
)
from .http_api import HttpTransport
from .lan import LanTransport
from .log import debug, error, info, warn
from .models import ConnectionState, Light, PartialControl
from .transport import Transport

TransportFactory = Callable[[Config], Transport]

_LAN_FAILURE_MESSAGES = {
    ERROR_NO_LIGHTS: "No LIFX lights found on your network",
    ERROR_TIMEOUT: "Network timeout - check if lights are powered on",
    ERROR_CONNECTION_REFUSED: "Connection refused - check your network connection",
    ERROR_NETWORK: "Network error - check your internet connection",
}

_ERROR_TIPS = {
    ERROR_NO_LIGHTS: "Tip: Ensure lights are on the same WiFi network as this computer",
    ERROR_TIMEOUT: "Tip: Check that your lights are powered on and not in a power-saving mode",
    ERROR_CONNECTION_REFUSED: "Tip: Try disabling your VPN or checking firewall settings",
}


def build_lan_transport(config: Config) -> Transport:
    return LanTransport(
        timeout_ms=config.lan_timeout_ms,
        state_timeout_ms=config.lan_state_timeout_ms,
        retry_attempts=config.lan_retry_attempts,
        cooldown_ms=config.lan_cooldown_ms,
        control_timeout_ms=config.control_timeout_ms,
    )


def build_http_transport(config: Config) -> Transport:
    return HttpTransport(config.http_api_token, control_timeout_ms=config.control_timeout_ms)


class LightCoordinator:
    def __init__(
        self,
        config: Optional[Config] = None,
        *,
        lan_factory: TransportFactory = build_lan_transport,
        http_factory: TransportFactory = build_http_transport,
    ):
        self.config = config or Config()
        self._lan_factory = lan_factory
        self._http_factory = http_factory
        self._transports: dict[str, Transport] = {}
        self._known_ids: dict[str, frozenset] = {}
        self._state = ConnectionState()

    async def __aenter__(self) -> "LightCoordinator":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.destroy()

    # -- lifecycle --------------------------------------------------------

    async def initialize(self) -> None:
        """Bring up LAN (if enabled) then HTTP (if a token is configured).

        Each transport fails independently. Raises NoTransportAvailable only
        when none of the configured transports came up.
        """
        if self._transports:
            await self.destroy()

        state = self._state
        state.discovery_status = "running"
        failures: dict[str, TransportError] = {}

        if self.config.enable_lan_discovery:
            lan = self._lan_factory(self.config)
            try:
                await lan.initialize()
            except TransportError as e:
                warn(f"LAN discovery failed: {e}")
                await lan.shutdown()
                failures[SOURCE_LAN] = e
                state.lan_available = False
                state.discovery_status = "error"
                state.error_type = e.reason
                state.last_error = _LAN_FAILURE_MESSAGES.get(e.reason, e.user_message)
            else:
                self._transports[SOURCE_LAN] = lan
                state.lan_available = True
                state.connection_type = "lan"
                state.discovery_status = "success"
                state.last_error = None
                state.error_type = None

        if self.config.http_api_token:
            http = self._http_factory(self.config)
            try:
                await http.initialize()
            except TransportError as e:
                warn(f"HTTP API initialization failed: {e}")
                await http.shutdown()
                failures[SOURCE_HTTP] = e
                state.http_available = False
                state.last_error = f"HTTP API failed: {e.user_message}"
                state.error_type = e.reason
            else:
                self._transports[SOURCE_HTTP] = http
                state.http_available = True
                if not state.lan_available:
                    state.connection_type = "http"
                    state.discovery_status = "success"

        if not self._transports:
            state.discovery_status = "error"
            state.connection_type = "none"
            raise NoTransportAvailable(
                "No connection method available. Enable LAN discovery or provide HTTP API token.",
                failures=failures,
            )
        info(f"Connected via {state.connection_type.upper()} ({', '.join(self._transports)} available)")

    async def destroy(self) -> None:
        """Shut down every owned transport and forget its lights. Safe to call repeatedly."""
        transports, self._transports = self._transports, {}
        self._known_ids = {}
        state = self._state
        state.lan_available = False
        state.http_available = False
        state.active_lights = []
        state.connection_type = "none"
        state.discovery_status = "idle"
        for name, transport in transports.items():
            try:
                await transport.shutdown()
            except (TransportError, OSError) as e:
                warn(f"{name.upper()} shutdown failed: {e}")

    # -- discovery --------------------------------------------------------

    def _available(self) -> list[tuple[str, Transport]]:
        return [(name, self._transports[name]) for name in SOURCE_PRIORITY if name in self._transports]

    async def _discover_from(self, name: str, transport: Transport) -> Optional[list[Light]]:
        try:
            lights = await transport.discover()
        except (TransportError, OSError, asyncio.TimeoutError) as e:
            warn(f"Failed to get {name.upper()} lights: {e}")
            return None
        info(f"Found {len(lights)} {name.upper()} light(s)")
        return lights

    async def discover_lights(self) -> list[Light]:
        """Query every available transport and rebuild the merged light set.

        A light reported by several transports is kept once, from the
        highest-priority transport (LAN before HTTP). Zero lights is
        reported through the state (status "error", type "no-lights"), not
        raised.
        """
        available = self._available()
        if not available:
            raise NoTransportAvailable("No transport is available; call initialize() first")

        state = self._state
        state.discovery_status = "running"
        debug("Starting light discovery...")

        results = await asyncio.gather(*(self._discover_from(name, t) for name, t in available))

        merged: dict[str, Light] = {}
        known: dict[str, frozenset] = {}
        primary: Optional[str] = None
        for (name, _), lights in zip(available, results):
            if lights is None:
                known[name] = self._known_ids.get(name, frozenset())
                continue
            primary = primary or name
            known[name] = frozenset(light.id for light in lights)
            for light in lights:
                if light.id not in merged:
                    merged[light.id] = light.model_copy(update={"source": name})

        # LAN failed this round but the cloud still answers: route via HTTP
        if primary is not None:
            state.connection_type = primary

        self._known_ids = known
        state.active_lights = list(merged.values())
        state.last_discovery = datetime.now()

        if not state.active_lights:
            state.discovery_status = "error"
            state.last_error = "No lights discovered"
            state.error_type = ERROR_NO_LIGHTS
        else:
            state.discovery_status = "success"
            state.last_error = None
            state.error_type = None

        info(f"Total lights discovered: {len(state.active_lights)}")
        return [light.model_copy() for light in state.active_lights]

    async def get_light_state(self, light_id: str) -> Optional[Light]:
        """Fresh discovery, then the snapshot for ``light_id`` (or None)."""
        await self.discover_lights()
        light = self._state.find(light_id)
        return light.model_copy() if light is not None else None

    # -- control ----------------------------------------------------------

    async def control_light(self, light_id: str, change: PartialControl) -> None:
        """Apply ``change`` via the light's source transport, falling back once.

        The fallback transport is only tried when it also reported this
        light in the last discovery. Raises DeviceNotFound for ids missing
        from the merged set and ControlFailed when every attempt failed.
        """
        light = self._state.find(light_id)
        if light is None:
            raise DeviceNotFound("Light not found", light_id=light_id)
        if change.is_empty():
            debug(f"Nothing to change for {light.label}")
            return
        if change.duration is None:
            change = change.model_copy(update={"duration": self.config.default_duration_ms})

        route = [light.source] + [name for name in SOURCE_PRIORITY if name != light.source]
        debug(f"Controlling {light.label} via {light.source}: {change.model_dump(exclude_none=True)}")

        attempts: list[tuple[str, BaseException]] = []
        for position, name in enumerate(route):
            transport = self._transports.get(name)
            if transport is None:
                continue
            if position > 0 and light_id not in self._known_ids.get(name, frozenset()):
                debug(f"{name.upper()} does not know {light_id}; no fallback there")
                continue
            try:
                await transport.control(light_id, change)
            except (TransportError, OSError, asyncio.TimeoutError) as e:
                warn(f"{name.upper()} control failed for {light.label}: {e}")
                attempts.append((name, e))
                continue
            suffix = " (fallback)" if position > 0 else ""
            info(f"Control succeeded via {name.upper()}{suffix}")
            return

        if not attempts:
            raise ControlFailed(
                f"No available transport can reach {light.label}", light_id=light_id, attempts=[]
            )
        last = attempts[-1][1]
        error(f"All transports failed for {light.label}")
        raise ControlFailed(
            f"Could not control {light.label}: {last}", light_id=light_id, attempts=attempts
        ) from last

    async def control_lights(
        self, light_ids: Iterable[str], change: PartialControl
    ) -> dict[str, Optional[LifxCtlError]]:
        """Control several lights concurrently.

        Returns light id -> None on success or the error for that light;
        one light failing does not stop the others.
        """

        async def outcome(light_id: str) -> Optional[LifxCtlError]:
            try:
                await self.control_light(light_id, change)
            except LifxCtlError as e:
                return e
            return None

        ids = list(dict.fromkeys(light_ids))
        results = await asyncio.gather(*(outcome(light_id) for light_id in ids))
        return dict(zip(ids, results))

    # -- state & diagnostics ---------------------------------------------

    def get_connection_state(self) -> ConnectionState:
        """Detached copy of the current connection state."""
        return self._state.model_copy(deep=True)

    def troubleshooting_steps(self) -> list[str]:
        state = self._state
        steps = []

        if state.error_type == ERROR_NO_LIGHTS or not state.active_lights:
            steps.append("Make sure your LIFX lights are powered on")
            steps.append("Check that your computer and lights are on the same network")
            steps.append("Try resetting your LIFX lights by unplugging and replugging them")

        if state.error_type in (ERROR_TIMEOUT, ERROR_CONNECTION_REFUSED):
            steps.append("Check your network connection")
            steps.append("Try disabling any VPN or firewall temporarily")
            steps.append("Restart your router if needed")

        if not state.http_available:
            steps.append("Add an HTTP API token from https://cloud.lifx.com/settings as a fallback")

        steps.append("Try increasing the LAN discovery timeout (--lan-timeout)")
        return steps

    def error_description(self) -> str:
        state = self._state
        if not state.last_error:
            return ""
        tip = _ERROR_TIPS.get(state.error_type or "")
        return f"{state.last_error}\n\n{tip}" if tip else state.last_error
