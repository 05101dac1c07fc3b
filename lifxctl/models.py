from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from .constants import (
    BRIGHTNESS_MAX,
    DEFAULT_DURATION_MS,
    HUE_MAX,
    KELVIN_MAX,
    KELVIN_MIN,
    SATURATION_MAX,
)

Source = Literal["lan", "http"]
DiscoveryStatus = Literal["idle", "running", "success", "error"]
ConnectionType = Literal["lan", "http", "none"]


class Light(BaseModel):
    """One physical bulb, in canonical units."""

    id: str
    label: str
    power: bool
    brightness: int = Field(..., ge=0, le=BRIGHTNESS_MAX)
    hue: int = Field(..., ge=0, le=HUE_MAX)
    saturation: int = Field(..., ge=0, le=SATURATION_MAX)
    kelvin: int = Field(..., ge=KELVIN_MIN, le=KELVIN_MAX)
    connected: bool = True
    reachable: bool = True
    source: Source
    group: Optional[str] = None


class PartialControl(BaseModel):
    """Sparse change request; a field left as None means "leave unchanged"."""

    power: Optional[bool] = None
    brightness: Optional[int] = Field(None, ge=0, le=BRIGHTNESS_MAX)
    hue: Optional[int] = Field(None, ge=0, le=HUE_MAX)
    saturation: Optional[int] = Field(None, ge=0, le=SATURATION_MAX)
    kelvin: Optional[int] = Field(None, ge=KELVIN_MIN, le=KELVIN_MAX)
    duration: Optional[int] = Field(None, ge=0)  # milliseconds

    @property
    def duration_ms(self) -> int:
        return DEFAULT_DURATION_MS if self.duration is None else self.duration

    @property
    def has_color_change(self) -> bool:
        return any(
            value is not None
            for value in (self.hue, self.saturation, self.brightness, self.kelvin)
        )

    def is_empty(self) -> bool:
        return self.power is None and not self.has_color_change


class ConnectionState(BaseModel):
    lan_available: bool = False
    http_available: bool = False
    active_lights: list[Light] = Field(default_factory=list)
    last_discovery: Optional[datetime] = None
    discovery_status: DiscoveryStatus = "idle"
    connection_type: ConnectionType = "none"
    last_error: Optional[str] = None
    error_type: Optional[str] = None

    def find(self, light_id: str) -> Optional[Light]:
        for light in self.active_lights:
            if light.id == light_id:
                return light
        return None
