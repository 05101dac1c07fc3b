"""
LAN transport: bulbs found by local broadcast, driven through lifx-async.

The handle cache (serial -> lifx-async Light) has exactly one writer, the
background scan task. initialize() starts it and returns on the first reply;
discover() waits for the running window or starts a fresh one, so bulbs
powered on later still show up. The task replaces the mapping wholesale on
every insert, so discover()/control() always read a complete snapshot by
taking a reference to the current dict.
"""

import asyncio
import contextlib
import time
from typing import AsyncIterator, Callable, NamedTuple, Optional

from lifx import HSBK, LifxError, LifxTimeoutError
from lifx import Light as LifxLight
from lifx import discover as lifx_discover

from .constants import (
    DEFAULT_CONTROL_TIMEOUT_MS,
    DEFAULT_LAN_COOLDOWN_MS,
    DEFAULT_LAN_RETRY_ATTEMPTS,
    DEFAULT_LAN_STATE_TIMEOUT_MS,
    DEFAULT_LAN_TIMEOUT_MS,
    ERROR_CONNECTION_REFUSED,
    ERROR_NETWORK,
    ERROR_NO_LIGHTS,
    ERROR_TIMEOUT,
    LAN_BROADCAST_ADDRESS,
    SOURCE_LAN,
)
from .convert import (
    clamp_kelvin,
    degrees_to_device_hue,
    device_hue_to_degrees,
    fraction_to_percent,
    ms_to_seconds,
    normalize_light_id,
    percent_to_fraction,
)
from .errors import (
    LightNotFound,
    ProtocolError,
    TransportError,
    TransportTimeout,
    TransportUnavailable,
)
from .log import debug, info, recv, send, warn
from .models import Light, PartialControl
from .transport import ColorState, Transport, device_channels, race_timeout, resolve_color

Scanner = Callable[[float, str], AsyncIterator]


async def scan_lights(timeout: float, broadcast_address: str) -> AsyncIterator[LifxLight]:
    """Yield every color-capable bulb answering the broadcast within ``timeout``."""
    async for device in lifx_discover(timeout=timeout, broadcast_address=broadcast_address):
        if isinstance(device, LifxLight):
            yield device
        else:
            debug(f"LAN: skipping non-light device {getattr(device, 'serial', '?')}")


class _DeviceState(NamedTuple):
    """Raw reply of a state query, still in lifx-async units."""

    color: HSBK
    power: bool
    label: str


def _color_state(color: HSBK) -> ColorState:
    return ColorState(
        hue=device_hue_to_degrees(color.hue),
        saturation=fraction_to_percent(color.saturation),
        brightness=fraction_to_percent(color.brightness),
        kelvin=clamp_kelvin(color.kelvin),
    )


def _device_color(target: ColorState) -> HSBK:
    return HSBK(
        hue=degrees_to_device_hue(target.hue),
        saturation=percent_to_fraction(target.saturation),
        brightness=percent_to_fraction(target.brightness),
        kelvin=target.kelvin,
    )


def _failure_reason(exc: BaseException) -> str:
    if isinstance(exc, ConnectionRefusedError):
        return ERROR_CONNECTION_REFUSED
    if isinstance(exc, (LifxTimeoutError, asyncio.TimeoutError)):
        return ERROR_TIMEOUT
    return ERROR_NETWORK


class LanTransport(Transport):
    name = SOURCE_LAN

    def __init__(
        self,
        timeout_ms: int = DEFAULT_LAN_TIMEOUT_MS,
        state_timeout_ms: int = DEFAULT_LAN_STATE_TIMEOUT_MS,
        retry_attempts: int = DEFAULT_LAN_RETRY_ATTEMPTS,
        cooldown_ms: int = DEFAULT_LAN_COOLDOWN_MS,
        control_timeout_ms: int = DEFAULT_CONTROL_TIMEOUT_MS,
        broadcast_address: str = LAN_BROADCAST_ADDRESS,
        scanner: Scanner = scan_lights,
    ):
        self._timeout = timeout_ms / 1000.0
        self._state_timeout = state_timeout_ms / 1000.0
        self._retry_attempts = max(1, int(retry_attempts))
        self._cooldown = cooldown_ms / 1000.0
        self._control_timeout = control_timeout_ms / 1000.0
        self._broadcast_address = broadcast_address
        self._scanner = scanner

        self._handles: dict[str, LifxLight] = {}
        self._cooldown_until: dict[str, float] = {}
        self._scan_task: Optional[asyncio.Task] = None
        self._scan_error: Optional[BaseException] = None
        self._ready: Optional[asyncio.Event] = None

    @property
    def device_count(self) -> int:
        return len(self._handles)

    async def initialize(self) -> None:
        """Start the broadcast scan and wait for the first bulb to answer."""
        if self._ready is not None:
            return

        self._ready = asyncio.Event()
        self._start_scan()
        info(f"LAN: scanning for lights ({self._timeout:g}s)...")

        try:
            # small grace period for the scanner's own timeout to fire first
            await asyncio.wait_for(self._ready.wait(), timeout=self._timeout + 1.0)
        except asyncio.TimeoutError as exc:
            await self.shutdown()
            raise TransportUnavailable(
                "LAN discovery timed out", transport=self.name, reason=ERROR_TIMEOUT
            ) from exc

        if self._handles:
            info(f"LAN: first light answered, {len(self._handles)} known so far")
            return

        scan_error = self._scan_error
        await self.shutdown()
        if scan_error is not None:
            raise TransportUnavailable(
                f"LAN discovery failed: {scan_error}",
                transport=self.name,
                reason=_failure_reason(scan_error),
            ) from scan_error
        raise TransportUnavailable(
            "No lights discovered via LAN", transport=self.name, reason=ERROR_NO_LIGHTS
        )

    def _start_scan(self) -> None:
        self._scan_error = None
        self._scan_task = asyncio.create_task(self._scan(self._ready), name="lifxctl-lan-scan")

    async def _scan(self, ready: asyncio.Event) -> None:
        try:
            async for device in self._scanner(self._timeout, self._broadcast_address):
                try:
                    light_id = normalize_light_id(str(device.serial))
                except ValueError as e:
                    debug(f"LAN: ignoring device with unusable serial: {e}")
                    continue
                known = self._handles.get(light_id)
                if known is not None:
                    if device is not known:
                        with contextlib.suppress(LifxError, OSError):
                            await device.close()
                    continue
                self._handles = {**self._handles, light_id: device}
                debug(f"LAN: discovered {light_id} at {getattr(device, 'ip', '?')}")
                ready.set()
        except (LifxError, OSError) as e:
            self._scan_error = e
            warn(f"LAN: scan aborted: {e}")
        finally:
            ready.set()

    async def _rescan(self) -> None:
        """Wait for the running scan window, or run a fresh one, so bulbs
        powered on since the last window are picked up."""
        if self._ready is None:
            return
        if self._scan_task is None or self._scan_task.done():
            self._start_scan()
        try:
            await asyncio.wait_for(asyncio.shield(self._scan_task), timeout=self._timeout + 1.0)
        except asyncio.TimeoutError:
            warn("LAN: scan window overran; using the lights found so far")

    @contextlib.contextmanager
    def _translate(self, light_id: str, what: str):
        """Map library and socket errors onto the transport taxonomy."""
        try:
            yield
        except TransportError:
            raise
        except LifxTimeoutError as e:
            raise TransportTimeout(f"{what} timed out: {e}", transport=self.name, light_id=light_id) from e
        except LifxError as e:
            raise ProtocolError(f"{what} failed: {e}", transport=self.name, light_id=light_id) from e
        except (OSError, ValueError) as e:
            raise TransportError(
                f"{what} failed: {e}",
                transport=self.name,
                light_id=light_id,
                reason=_failure_reason(e),
            ) from e

    async def _read_state(self, light_id: str, handle: LifxLight) -> _DeviceState:
        send("LAN", f"{light_id} get_color")
        with self._translate(light_id, "state query"):
            reply = await race_timeout(
                handle.get_color(),
                self._state_timeout,
                transport=self.name,
                light_id=light_id,
                what="state query",
            )
            color, power, label = reply
            state = _DeviceState(color=color, power=bool(power), label=str(label or ""))
        recv("LAN", f"{light_id} {state}")
        return state

    async def _snapshot(self, light_id: str, handle: LifxLight) -> Optional[Light]:
        last_error: Optional[TransportError] = None
        for attempt in range(1, self._retry_attempts + 1):
            try:
                state = await self._read_state(light_id, handle)
            except TransportError as e:
                last_error = e
                debug(f"LAN: state read {attempt}/{self._retry_attempts} for {light_id} failed: {e}")
                continue
            self._cooldown_until.pop(light_id, None)
            channels = _color_state(state.color)
            return Light(
                id=light_id,
                label=state.label or f"Light {light_id[:8]}",
                power=state.power,
                brightness=channels.brightness,
                hue=channels.hue,
                saturation=channels.saturation,
                kelvin=channels.kelvin,
                connected=True,
                reachable=True,
                source=self.name,
            )

        self._cooldown_until[light_id] = time.monotonic() + self._cooldown
        warn(f"LAN: {light_id} did not answer ({last_error}); skipping for {self._cooldown:g}s")
        return None

    async def discover(self) -> list[Light]:
        """Scan for new bulbs, then query the live state of every known bulb."""
        await self._rescan()
        handles = self._handles
        now = time.monotonic()
        due = {
            light_id: handle
            for light_id, handle in handles.items()
            if self._cooldown_until.get(light_id, 0.0) <= now
        }
        skipped = len(handles) - len(due)
        if skipped:
            debug(f"LAN: {skipped} light(s) cooling down after failed reads")

        snapshots = await asyncio.gather(
            *(self._snapshot(light_id, handle) for light_id, handle in due.items())
        )
        return [light for light in snapshots if light is not None]

    async def _command(self, light_id: str, operation, what: str) -> None:
        with self._translate(light_id, what):
            await race_timeout(
                operation,
                self._control_timeout,
                transport=self.name,
                light_id=light_id,
                what=what,
            )
        recv("LAN", f"{light_id} {what} acknowledged")

    async def control(self, light_id: str, change: PartialControl) -> None:
        handle = self._handles.get(light_id)
        if handle is None:
            raise LightNotFound("Light not found", transport=self.name, light_id=light_id)

        duration = ms_to_seconds(change.duration_ms)

        if change.power is not None:
            send("LAN", f"{light_id} set_power {change.power} over {duration:g}s")
            await self._command(
                light_id, handle.set_power(change.power, duration=duration), "power command"
            )

        if change.has_color_change:
            current = await self._read_state(light_id, handle)
            color = current.color
            target = resolve_color(
                change, device_channels(color.hue, color.saturation, color.brightness, color.kelvin)
            )
            send("LAN", f"{light_id} set_color {tuple(target)} over {duration:g}s")
            await self._command(
                light_id, handle.set_color(_device_color(target), duration=duration), "color command"
            )

    async def shutdown(self) -> None:
        task, self._scan_task = self._scan_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._ready = None
        handles, self._handles = self._handles, {}
        if handles:
            debug(f"LAN: releasing {len(handles)} device handle(s)")
        for handle in handles.values():
            with contextlib.suppress(LifxError, OSError):
                await handle.close()
        self._cooldown_until.clear()
