"""Tests for the LAN transport against fake lifx-async handles."""

import pytest

from conftest import FakeLifxLight, changing_scanner, fake_scanner
from lifxctl.errors import LightNotFound, TransportError, TransportTimeout, TransportUnavailable
from lifxctl.lan import LanTransport
from lifxctl.models import PartialControl


def lan_with(*devices, error=None, **kwargs):
    kwargs.setdefault("timeout_ms", 200)
    kwargs.setdefault("cooldown_ms", 60000)
    return LanTransport(scanner=fake_scanner(*devices, error=error), **kwargs)


@pytest.mark.asyncio
class TestLanInitialize:
    async def test_initialize_collects_devices(self):
        lan = lan_with(FakeLifxLight("D0:73:D5:00:00:01"), FakeLifxLight("d073d5000002"))
        await lan.initialize()
        assert lan.device_count == 2
        await lan.shutdown()

    async def test_no_devices_is_unavailable(self):
        lan = lan_with()
        with pytest.raises(TransportUnavailable) as info:
            await lan.initialize()
        assert info.value.reason == "no-lights"
        assert info.value.transport == "lan"

    async def test_scan_failure_is_unavailable(self):
        lan = lan_with(error=ConnectionRefusedError("refused"))
        with pytest.raises(TransportUnavailable) as info:
            await lan.initialize()
        assert info.value.reason == "connection-refused"

    async def test_devices_with_bad_serials_are_ignored(self):
        lan = lan_with(FakeLifxLight("not-a-serial"), FakeLifxLight("d073d5000002"))
        await lan.initialize()
        assert [light.id for light in await lan.discover()] == ["d073d5000002"]
        await lan.shutdown()

    async def test_shutdown_is_idempotent(self):
        device = FakeLifxLight("d073d5000001")
        lan = lan_with(device)
        await lan.initialize()
        await lan.shutdown()
        await lan.shutdown()
        assert lan.device_count == 0
        assert device.close_calls == 1

    async def test_duplicate_handle_from_a_later_scan_is_closed(self):
        first = FakeLifxLight("d073d5000001")
        again = FakeLifxLight("d073d5000001")
        lan = LanTransport(timeout_ms=200, scanner=changing_scanner([first], [again]))
        await lan.initialize()
        await lan.discover()

        assert again.close_calls == 1
        assert first.close_calls == 0
        assert lan.device_count == 1


@pytest.mark.asyncio
class TestLanDiscover:
    async def test_device_units_become_canonical(self):
        device = FakeLifxLight("d073d5000001", hue=120.0, saturation=0.5, brightness=0.4, kelvin=3500, label="Desk")
        lan = lan_with(device)
        await lan.initialize()

        [light] = await lan.discover()
        assert light.id == "d073d5000001"
        assert light.label == "Desk"
        assert light.power is True
        assert (light.hue, light.saturation, light.brightness, light.kelvin) == (120, 50, 40, 3500)
        assert light.source == "lan"

    async def test_discover_requeries_live_state(self):
        device = FakeLifxLight("d073d5000001", brightness=0.4)
        lan = lan_with(device)
        await lan.initialize()
        await lan.discover()

        # changed out of band, e.g. by a wall switch or the phone app
        device.color = device.color.__class__(hue=10.0, saturation=0.2, brightness=0.9, kelvin=4000)
        [light] = await lan.discover()
        assert light.brightness == 90
        assert light.hue == 10

    async def test_unanswered_device_is_skipped_during_cooldown(self):
        flaky = FakeLifxLight("d073d5000001")
        flaky.read_failures = 3
        lan = lan_with(flaky, FakeLifxLight("d073d5000002"), retry_attempts=3)
        await lan.initialize()

        assert [light.id for light in await lan.discover()] == ["d073d5000002"]
        reads = flaky.calls.count("get_color")
        assert reads == 3

        assert [light.id for light in await lan.discover()] == ["d073d5000002"]
        assert flaky.calls.count("get_color") == reads

    async def test_bulb_powered_on_later_is_found(self):
        early = FakeLifxLight("d073d5000001")
        late = FakeLifxLight("d073d5000002")
        lan = LanTransport(timeout_ms=200, scanner=changing_scanner([early], [early, late]))
        await lan.initialize()
        assert lan.device_count == 1

        assert sorted(light.id for light in await lan.discover()) == ["d073d5000001", "d073d5000002"]

    async def test_discover_after_shutdown_does_not_scan(self):
        lan = LanTransport(timeout_ms=200, scanner=changing_scanner([FakeLifxLight("d073d5000001")], []))
        await lan.initialize()
        await lan.shutdown()
        assert await lan.discover() == []

    async def test_retry_recovers_from_one_lost_reply(self):
        flaky = FakeLifxLight("d073d5000001")
        flaky.read_failures = 1
        lan = lan_with(flaky, retry_attempts=2)
        await lan.initialize()
        assert len(await lan.discover()) == 1


@pytest.mark.asyncio
class TestLanControl:
    async def _ready(self, device, **kwargs):
        lan = lan_with(device, **kwargs)
        await lan.initialize()
        return lan

    async def test_power_only_sends_no_color(self):
        device = FakeLifxLight("d073d5000001")
        before = device.color
        lan = await self._ready(device)

        await lan.control("d073d5000001", PartialControl(power=False))

        assert device.power is False
        assert device.color is before
        assert device.calls == [("set_power", False, 1.0)]

    async def test_single_channel_uses_fresh_state(self):
        device = FakeLifxLight("d073d5000001", hue=200.0, saturation=0.8, brightness=0.5, kelvin=3500)
        lan = await self._ready(device)
        await lan.discover()

        # brightness changed since the last discovery
        device.color = device.color.__class__(hue=200.0, saturation=0.8, brightness=0.7, kelvin=3500)
        await lan.control("d073d5000001", PartialControl(hue=30))

        [light] = await lan.discover()
        assert (light.hue, light.saturation, light.brightness, light.kelvin) == (30, 80, 70, 3500)

    async def test_untouched_kelvin_outside_canonical_range_is_kept(self):
        device = FakeLifxLight("d073d5000001", saturation=0.0, brightness=0.5, kelvin=1500)
        lan = await self._ready(device)

        await lan.control("d073d5000001", PartialControl(brightness=30))

        assert device.color.kelvin == 1500
        assert device.color.brightness == pytest.approx(0.3)
        assert device.color.saturation == 0.0

    async def test_untouched_channels_are_sent_as_read(self):
        device = FakeLifxLight("d073d5000001", hue=123.4, saturation=0.503, brightness=0.5)
        lan = await self._ready(device)

        await lan.control("d073d5000001", PartialControl(brightness=30))

        assert device.color.hue == pytest.approx(123.4)
        assert device.color.saturation == pytest.approx(0.503)

    async def test_color_on_dark_bulb_sets_full_brightness(self):
        device = FakeLifxLight("d073d5000001", brightness=0.0)
        lan = await self._ready(device)

        await lan.control("d073d5000001", PartialControl(hue=120))

        assert device.color.brightness == pytest.approx(1.0)
        assert device.color.hue == pytest.approx(120.0)

    async def test_power_is_acknowledged_before_color(self):
        device = FakeLifxLight("d073d5000001")
        lan = await self._ready(device)
        device.calls.clear()

        await lan.control("d073d5000001", PartialControl(power=True, kelvin=2700, duration=500))

        assert device.calls == [("set_power", True, 0.5), "get_color", ("set_color", 0.5)]
        assert device.color.kelvin == 2700

    async def test_unknown_light(self):
        lan = await self._ready(FakeLifxLight("d073d5000001"))
        with pytest.raises(LightNotFound):
            await lan.control("d073d5ffffff", PartialControl(power=True))

    async def test_dropped_command_times_out(self):
        device = FakeLifxLight("d073d5000001")
        device.hang_on_color = True
        lan = await self._ready(device, control_timeout_ms=50)

        with pytest.raises(TransportTimeout):
            await lan.control("d073d5000001", PartialControl(brightness=20))

    async def test_state_read_failure_is_a_transport_error(self):
        device = FakeLifxLight("d073d5000001")
        lan = await self._ready(device)
        device.read_failures = 1

        with pytest.raises(TransportError):
            await lan.control("d073d5000001", PartialControl(brightness=20))
