"""Pytest fixtures and fakes shared by the test modules."""

import asyncio
import io
import json
from urllib.error import HTTPError

import pytest
from lifx import HSBK

from lifxctl.config import Config
from lifxctl.coordinator import LightCoordinator
from lifxctl.errors import LightNotFound
from lifxctl.models import Light, PartialControl
from lifxctl.transport import ColorState, Transport, resolve_color

LIGHT_A = "d073d5000001"
LIGHT_B = "d073d5000002"
LIGHT_C = "d073d5000003"


def make_light(light_id: str = LIGHT_A, **overrides) -> Light:
    fields = {
        "id": light_id,
        "label": f"Bulb {light_id[-2:]}",
        "power": True,
        "brightness": 50,
        "hue": 200,
        "saturation": 80,
        "kelvin": 3500,
        "connected": True,
        "reachable": True,
        "source": "lan",
    }
    fields.update(overrides)
    return Light(**fields)


class FakeTransport(Transport):
    """In-memory transport that behaves like a bulb: it keeps channel state."""

    def __init__(self, name, lights=(), *, init_error=None, discover_error=None, control_error=None):
        self.name = name
        self.lights = {light.id: light.model_copy(update={"source": name}) for light in lights}
        self.init_error = init_error
        self.discover_error = discover_error
        self.control_error = control_error
        self.calls = []
        self.shutdown_calls = 0

    async def initialize(self):
        self.calls.append(("initialize",))
        if self.init_error is not None:
            raise self.init_error

    async def discover(self):
        self.calls.append(("discover",))
        if self.discover_error is not None:
            raise self.discover_error
        return [light.model_copy() for light in self.lights.values()]

    async def control(self, light_id, change: PartialControl):
        self.calls.append(("control", light_id, change))
        if self.control_error is not None:
            raise self.control_error
        light = self.lights.get(light_id)
        if light is None:
            raise LightNotFound("Light not found", transport=self.name, light_id=light_id)
        updates = {}
        if change.power is not None:
            updates["power"] = change.power
        if change.has_color_change:
            current = ColorState(light.hue, light.saturation, light.brightness, light.kelvin)
            updates.update(resolve_color(change, current)._asdict())
        self.lights[light_id] = light.model_copy(update=updates)

    async def shutdown(self):
        self.shutdown_calls += 1

    @property
    def control_calls(self):
        return [call for call in self.calls if call[0] == "control"]


def coordinator_with(lan=None, http=None, **config_fields) -> LightCoordinator:
    """Coordinator wired to fake transports.

    LAN is enabled when ``lan`` is given; HTTP is configured when ``http`` is given.
    """
    fields = {
        "enable_lan_discovery": lan is not None,
        "http_api_token": "token" if http is not None else None,
    }
    fields.update(config_fields)
    return LightCoordinator(
        Config(**fields),
        lan_factory=lambda config: lan,
        http_factory=lambda config: http,
    )


# -- lifx-async fakes -----------------------------------------------------


class FakeLifxLight:
    """Stands in for a lifx-async Light handle."""

    def __init__(self, serial, *, hue=200.0, saturation=0.8, brightness=0.5, kelvin=3500, power=True, label="Lamp"):
        self.serial = serial
        self.ip = "192.168.1.50"
        self.color = HSBK(hue=hue, saturation=saturation, brightness=brightness, kelvin=kelvin)
        self.power = power
        self.label = label
        self.calls = []
        self.read_failures = 0
        self.hang_on_color = False
        self.close_calls = 0

    async def get_color(self):
        self.calls.append("get_color")
        if self.read_failures > 0:
            self.read_failures -= 1
            raise OSError("no reply")
        return self.color, 65535 if self.power else 0, self.label

    async def set_power(self, level, duration=0.0):
        self.calls.append(("set_power", level, duration))
        self.power = bool(level)

    async def set_color(self, color, duration=0.0):
        self.calls.append(("set_color", duration))
        if self.hang_on_color:
            await asyncio.sleep(3600)
        self.color = color

    async def close(self):
        self.close_calls += 1


def fake_scanner(*devices, error=None):
    async def scan(timeout, broadcast_address):
        for device in devices:
            yield device
        if error is not None:
            raise error

    return scan


def changing_scanner(*rounds):
    """Scanner whose answers change per scan window; the last round repeats."""
    windows = iter(rounds)
    last = rounds[-1]

    async def scan(timeout, broadcast_address):
        for device in next(windows, last):
            yield device

    return scan


# -- LIFX cloud fake --------------------------------------------------------


class _Response:
    def __init__(self, body):
        self._body = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeCloud:
    """Minimal model of the LIFX HTTP API, served through a patched urlopen."""

    TOKEN = "good-token"

    def __init__(self):
        self.lights = {}
        self.requests = []
        self.state_status = "ok"
        self.raw_body = None
        self.timeouts = []

    def add(self, light_id, *, hue=120.0, saturation=0.5, brightness=0.4, kelvin=3500, power="on", label="Cloud Lamp", group="Office"):
        self.lights[light_id] = {
            "id": light_id,
            "label": label,
            "connected": True,
            "power": power,
            "brightness": brightness,
            "color": {"hue": hue, "saturation": saturation, "kelvin": kelvin},
            "group": {"id": "g1", "name": group},
        }
        return self.lights[light_id]

    def urlopen(self, req, timeout=None):
        body = json.loads(req.data.decode("utf-8")) if req.data else None
        path = req.full_url.split("/v1/", 1)[1]
        self.requests.append((req.get_method(), path, body))
        self.timeouts.append(timeout)

        if req.get_header("Authorization") != f"Bearer {self.TOKEN}":
            raise HTTPError(req.full_url, 401, "Unauthorized", {}, io.BytesIO(b""))
        if self.raw_body is not None:
            return _Response(self.raw_body)

        if path == "lights/all":
            return _Response(list(self.lights.values()))

        selector = path.split("/")[1]
        light_id = selector.split(":", 1)[1]
        light = self.lights.get(light_id)
        if light is None:
            raise HTTPError(req.full_url, 404, "Not Found", {}, io.BytesIO(b""))

        if req.get_method() == "GET":
            return _Response([light])

        self._apply(light, body)
        return _Response({"results": [{"id": light_id, "label": light["label"], "status": self.state_status}]})

    def _apply(self, light, body):
        if self.state_status != "ok":
            return
        if "power" in body:
            light["power"] = body["power"]
        if "brightness" in body:
            light["brightness"] = body["brightness"]
        for term in body.get("color", "").split():
            key, value = term.split(":")
            light["color"][key] = int(value) if key == "kelvin" else float(value)

    def state_puts(self):
        return [body for method, path, body in self.requests if method == "PUT"]


@pytest.fixture
def cloud(monkeypatch):
    fake = FakeCloud()
    monkeypatch.setattr("lifxctl.http_api.urlopen", fake.urlopen)
    return fake
