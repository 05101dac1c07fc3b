"""
HTTP transport: the LIFX cloud API (https://api.lifx.com/v1).

Requests are plain urllib calls run in the default executor so the
coordinator can await them and race them against its control bound.
"""

import asyncio
import functools
import json
from typing import Any, NamedTuple, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .constants import (
    DEFAULT_CONTROL_TIMEOUT_MS,
    ERROR_CONNECTION_REFUSED,
    ERROR_NETWORK,
    HTTP_API_BASE,
    HTTP_REQUEST_TIMEOUT,
    SOURCE_HTTP,
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
    AuthenticationError,
    LightNotFound,
    ProtocolError,
    TransportError,
    TransportTimeout,
    TransportUnavailable,
)
from .log import debug, info, recv, send, warn
from .models import Light, PartialControl
from .transport import ColorState, Transport, device_channels, race_timeout, resolve_color


class _CloudLight(NamedTuple):
    """One entry of the /lights directory, still in API units."""

    id: str
    label: str
    power: str  # "on" / "off"
    brightness: float  # 0.0-1.0
    hue: float  # degrees
    saturation: float  # 0.0-1.0
    kelvin: int
    connected: bool
    group: Optional[str]

    @property
    def channels(self) -> ColorState:
        return ColorState(
            hue=device_hue_to_degrees(self.hue),
            saturation=fraction_to_percent(self.saturation),
            brightness=fraction_to_percent(self.brightness),
            kelvin=clamp_kelvin(self.kelvin),
        )

    @property
    def read_back(self) -> ColorState:
        """Unrounded, unclamped channels for merging a partial change."""
        return device_channels(self.hue, self.saturation, self.brightness, self.kelvin)

    def to_light(self) -> Light:
        channels = self.channels
        return Light(
            id=self.id,
            label=self.label or f"Light {self.id[:8]}",
            power=self.power == "on",
            brightness=channels.brightness,
            hue=channels.hue,
            saturation=channels.saturation,
            kelvin=channels.kelvin,
            connected=self.connected,
            # the cloud only knows whether the bulb holds a session with it
            reachable=self.connected,
            source=SOURCE_HTTP,
            group=self.group,
        )


def _parse_light(raw: Any) -> _CloudLight:
    try:
        color = raw["color"]
        group = raw.get("group") or {}
        return _CloudLight(
            id=normalize_light_id(str(raw["id"])),
            label=str(raw.get("label") or ""),
            power=str(raw["power"]),
            brightness=float(raw["brightness"]),
            hue=float(color["hue"]),
            saturation=float(color["saturation"]),
            kelvin=int(color["kelvin"]),
            connected=bool(raw.get("connected", True)),
            group=group.get("name") if isinstance(group, dict) else None,
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise ProtocolError(f"Malformed light entry: {e}", transport=SOURCE_HTTP) from e


def _color_string(target: ColorState) -> str:
    # kelvin first: on its own it resets saturation to 0, which the
    # explicit saturation term then overrides
    return (
        f"kelvin:{target.kelvin} "
        f"hue:{degrees_to_device_hue(target.hue):g} "
        f"saturation:{percent_to_fraction(target.saturation):g}"
    )


class HttpTransport(Transport):
    name = SOURCE_HTTP

    def __init__(
        self,
        token: Optional[str],
        base_url: str = HTTP_API_BASE,
        request_timeout: float = HTTP_REQUEST_TIMEOUT,
        control_timeout_ms: int = DEFAULT_CONTROL_TIMEOUT_MS,
    ):
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._control_timeout = control_timeout_ms / 1000.0
        # socket timeout applies per connect/read, so keep it well inside the bound
        self._request_timeout = min(request_timeout, self._control_timeout / 2)
        self._initialized = False

    # -- wire -------------------------------------------------------------

    def _request_sync(self, method: str, path: str, payload: Optional[dict], light_id: Optional[str]) -> Any:
        url = f"{self._base_url}/{path}"
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/json",
        }
        if data is not None:
            headers["Content-Type"] = "application/json"
        req = Request(url, data=data, headers=headers, method=method)

        send("HTTP", f"{method} {path} {json.dumps(payload) if payload is not None else ''}".rstrip())
        try:
            with urlopen(req, timeout=self._request_timeout) as resp:
                body = resp.read().decode("utf-8", errors="replace")
        except HTTPError as e:
            raise self._status_error(e.code, path, light_id) from e
        except URLError as e:
            if isinstance(e.reason, TimeoutError):
                raise TransportTimeout(
                    f"{method} {path} timed out", transport=self.name, light_id=light_id
                ) from e
            reason = ERROR_CONNECTION_REFUSED if isinstance(e.reason, ConnectionRefusedError) else ERROR_NETWORK
            raise TransportError(
                f"{method} {path} failed: {e.reason}", transport=self.name, light_id=light_id, reason=reason
            ) from e
        except TimeoutError as e:
            raise TransportTimeout(f"{method} {path} timed out", transport=self.name, light_id=light_id) from e

        recv("HTTP", body)
        if not body.strip():
            return None
        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise ProtocolError(
                f"Could not parse response as JSON: {body[:80]}", transport=self.name, light_id=light_id
            ) from e

    def _status_error(self, status: int, path: str, light_id: Optional[str]) -> TransportError:
        if status == 401:
            return AuthenticationError("HTTP API token was rejected", transport=self.name)
        if status == 404:
            return LightNotFound(f"{path} matched no lights", transport=self.name, light_id=light_id)
        if status == 429:
            return ProtocolError("Rate limited by the LIFX cloud", transport=self.name, light_id=light_id)
        return ProtocolError(f"Unexpected HTTP status {status} for {path}", transport=self.name, light_id=light_id)

    async def _request(
        self, method: str, path: str, payload: Optional[dict] = None, light_id: Optional[str] = None
    ) -> Any:
        """Run one blocking request in the default executor, bounded by the control timeout.

        When the bound expires only the awaiting future is cancelled; the
        worker thread keeps its urlopen call until the socket timeout. A PUT
        may therefore still land after a fallback transport has applied the
        same change. The socket timeout is half the bound to narrow that window.
        """
        loop = asyncio.get_running_loop()
        call = functools.partial(self._request_sync, method, path, payload, light_id)
        return await race_timeout(
            loop.run_in_executor(None, call),
            self._control_timeout,
            transport=self.name,
            light_id=light_id,
            what=f"{method} {path}",
        )

    async def _directory(self) -> list[_CloudLight]:
        body = await self._request("GET", "lights/all")
        if not isinstance(body, list):
            raise ProtocolError("Light directory is not a list", transport=self.name)
        lights = []
        for raw in body:
            try:
                lights.append(_parse_light(raw))
            except ProtocolError as e:
                warn(f"HTTP: skipping directory entry: {e}")
        return lights

    async def _fetch_one(self, light_id: str) -> _CloudLight:
        body = await self._request("GET", f"lights/id:{light_id}", light_id=light_id)
        if not isinstance(body, list):
            raise ProtocolError("Light lookup is not a list", transport=self.name, light_id=light_id)
        for raw in body:
            entry = _parse_light(raw)
            if entry.id == light_id:
                return entry
        raise LightNotFound("Light not found", transport=self.name, light_id=light_id)

    def _check_results(self, body: Any, light_id: str, what: str) -> None:
        """Inspect a /state reply: {"results": [{"id", "label", "status"}]}."""
        if body is None:
            return
        if not isinstance(body, dict) or not isinstance(body.get("results"), list):
            raise ProtocolError(f"Unexpected {what} reply", transport=self.name, light_id=light_id)
        results = body["results"]
        if not results:
            raise LightNotFound("Light not found", transport=self.name, light_id=light_id)
        for result in results:
            status = result.get("status") if isinstance(result, dict) else None
            if status == "ok":
                continue
            if status == "timed_out":
                raise TransportTimeout(f"{what} timed out at the bulb", transport=self.name, light_id=light_id)
            if status == "offline":
                raise TransportError(
                    f"{what}: bulb is offline", transport=self.name, light_id=light_id, reason=ERROR_NETWORK
                )
            raise ProtocolError(f"{what} returned status {status!r}", transport=self.name, light_id=light_id)

    # -- capability -------------------------------------------------------

    async def initialize(self) -> None:
        """Validate the token with one directory call."""
        if not self._token:
            raise AuthenticationError("HTTP API token is required", transport=self.name)
        try:
            lights = await self._directory()
        except TransportUnavailable:
            raise
        except TransportError as e:
            raise TransportUnavailable(
                f"HTTP API unreachable: {e.user_message}", transport=self.name, reason=e.reason
            ) from e
        self._initialized = True
        info(f"HTTP: token accepted, {len(lights)} light(s) in the cloud directory")

    async def discover(self) -> list[Light]:
        return [entry.to_light() for entry in await self._directory()]

    async def control(self, light_id: str, change: PartialControl) -> None:
        duration = ms_to_seconds(change.duration_ms)
        path = f"lights/id:{light_id}/state"

        if change.power is not None:
            body = await self._request(
                "PUT", path, {"power": "on" if change.power else "off", "duration": duration}, light_id
            )
            self._check_results(body, light_id, "power command")

        if change.has_color_change:
            current = await self._fetch_one(light_id)
            target = resolve_color(change, current.read_back)
            debug(f"HTTP: {light_id} {tuple(current.read_back)} -> {tuple(target)}")
            body = await self._request(
                "PUT",
                path,
                {
                    "color": _color_string(target),
                    "brightness": percent_to_fraction(target.brightness),
                    "duration": duration,
                },
                light_id,
            )
            self._check_results(body, light_id, "color command")

    async def shutdown(self) -> None:
        if self._initialized:
            debug("HTTP: session closed")
        self._initialized = False
