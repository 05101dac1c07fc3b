"""
Transport capability shared by the LAN and HTTP implementations.

A transport discovers bulbs, reads their live state and applies partial
changes. Everything crossing this boundary is in canonical units
(see lifxctl.models); wire encodings stay private to each implementation.
"""

import abc
import asyncio
from typing import Awaitable, NamedTuple, Optional, TypeVar

from .constants import BRIGHTNESS_MAX, SATURATION_MAX
from .errors import TransportTimeout
from .models import Light, PartialControl

T = TypeVar("T")


class ColorState(NamedTuple):
    """The four color channels a bulb must receive together.

    Percent and degree scale. Values read back for a merge stay unrounded and
    unclamped (see device_channels) so untouched channels go out as read.
    """

    hue: float
    saturation: float
    brightness: float
    kelvin: int


def device_channels(hue: float, saturation: float, brightness: float, kelvin: int) -> ColorState:
    """Device encoding (degrees, 0.0-1.0 fractions, raw kelvin) -> ColorState for merging."""
    return ColorState(
        hue=float(hue),
        saturation=float(saturation) * SATURATION_MAX,
        brightness=float(brightness) * BRIGHTNESS_MAX,
        kelvin=int(kelvin),
    )


def resolve_color(change: PartialControl, current: ColorState) -> ColorState:
    """Merge a partial change over a freshly read color state.

    Channels absent from ``change`` keep their current value. If that leaves
    brightness at 0 while the caller only asked for a hue, saturation or
    kelvin change, brightness is raised to 100: a bulb at 0% shows nothing,
    so a color change there would be invisible.
    """
    hue = current.hue if change.hue is None else change.hue
    saturation = current.saturation if change.saturation is None else change.saturation
    brightness = current.brightness if change.brightness is None else change.brightness
    kelvin = current.kelvin if change.kelvin is None else change.kelvin

    color_requested = (
        change.hue is not None or change.saturation is not None or change.kelvin is not None
    )
    if brightness == 0 and change.brightness is None and color_requested:
        brightness = BRIGHTNESS_MAX

    return ColorState(hue=hue, saturation=saturation, brightness=brightness, kelvin=kelvin)


async def race_timeout(
    operation: Awaitable[T],
    timeout: float,
    *,
    transport: str,
    light_id: Optional[str] = None,
    what: str = "operation",
) -> T:
    """Await ``operation`` but give up after ``timeout`` seconds.

    The timeout races the operation (it is cancelled when the bound expires)
    and surfaces as TransportTimeout.
    """
    try:
        return await asyncio.wait_for(operation, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise TransportTimeout(
            f"{what} did not complete within {timeout:g}s",
            transport=transport,
            light_id=light_id,
        ) from exc


class Transport(abc.ABC):
    """Capability every light transport implements."""

    #: "lan" or "http"
    name: str = ""

    @abc.abstractmethod
    async def initialize(self) -> None:
        """Bring the transport up; raise TransportUnavailable on failure."""

    @abc.abstractmethod
    async def discover(self) -> list[Light]:
        """Return a live snapshot of every device this transport can see."""

    @abc.abstractmethod
    async def control(self, light_id: str, change: PartialControl) -> None:
        """Apply a partial change.

        Power is applied first as its own acknowledged operation. Color
        channels are then merged over a state read made inside this call
        (see resolve_color) and sent as one command.
        """

    @abc.abstractmethod
    async def shutdown(self) -> None:
        """Release sockets/sessions. Safe to call more than once."""
