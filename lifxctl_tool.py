#!/usr/bin/env python3
"""
LIFX Local + Cloud Control Tool
List and control LIFX bulbs over the LAN, falling back to the LIFX cloud API.
"""

import argparse
import asyncio
import sys
from typing import Optional

from lifxctl.config import Config, load_config
from lifxctl.convert import normalize_light_id
from lifxctl.coordinator import LightCoordinator
from lifxctl.errors import ConfigError, LifxCtlError, NoTransportAvailable
from lifxctl.log import caution, configure, debug, hint, say, section, stop, success, warn
from lifxctl.models import Light, PartialControl


def _describe(light: Light) -> str:
    power = "on " if light.power else "off"
    if light.saturation:
        color = f"hue {light.hue:>3} sat {light.saturation:>3}%"
    else:
        color = f"white {light.kelvin}K"
    group = f" [{light.group}]" if light.group else ""
    return f"{light.id}  {power}  {light.brightness:>3}%  {color:<20} via {light.source}  {light.label}{group}"


def build_change(args) -> Optional[PartialControl]:
    """Collect the control flags into one PartialControl (None when none given)."""
    fields = {
        "power": True if args.on else False if args.off else None,
        "brightness": args.brightness,
        "hue": args.hue,
        "saturation": args.saturation,
        "kelvin": args.kelvin,
        "duration": args.duration,
    }
    if all(value is None for key, value in fields.items() if key != "duration"):
        return None
    return PartialControl(**{key: value for key, value in fields.items() if value is not None})


class CommandHandler:
    def __init__(self, args, coordinator: LightCoordinator):
        self.args = args
        self.coordinator = coordinator

    async def handle_list(self) -> int:
        lights = await self.coordinator.discover_lights()
        section("Lights")
        if not lights:
            stop("No lights discovered")
            return 1
        for light in lights:
            say(_describe(light))
        return 0

    async def handle_status(self) -> int:
        await self.coordinator.discover_lights()
        state = self.coordinator.get_connection_state()
        section("Connection")
        say(f"Primary transport: {state.connection_type}")
        say(f"LAN available:     {state.lan_available}")
        say(f"HTTP available:    {state.http_available}")
        say(f"Discovery:         {state.discovery_status} ({len(state.active_lights)} lights)")
        if state.last_discovery:
            say(f"Last discovery:    {state.last_discovery:%Y-%m-%d %H:%M:%S}")
        if state.last_error:
            caution(self.coordinator.error_description())
        return 0

    async def handle_control(self, change: PartialControl) -> int:
        lights = await self.coordinator.discover_lights()
        if self.args.all:
            targets = [light.id for light in lights]
        else:
            targets = self.args.ids

        if not targets:
            stop("No lights to control")
            return 1

        outcomes = await self.coordinator.control_lights(targets, change)
        failed = 0
        for light_id, err in outcomes.items():
            if err is None:
                success(f"{light_id}: done")
            else:
                failed += 1
                stop(f"{light_id}: {err}")
        return 1 if failed else 0

    def print_troubleshooting(self) -> None:
        section("Troubleshooting")
        description = self.coordinator.error_description()
        if description:
            say(description)
            say("")
        for step in self.coordinator.troubleshooting_steps():
            hint(step)


async def run(args, config: Config, change: Optional[PartialControl]) -> int:
    coordinator = LightCoordinator(config)
    handler = CommandHandler(args, coordinator)
    try:
        try:
            await coordinator.initialize()
        except NoTransportAvailable as e:
            stop(str(e))
            handler.print_troubleshooting()
            return 1

        if args.troubleshoot:
            await coordinator.discover_lights()
            handler.print_troubleshooting()
            return 0
        if args.status:
            return await handler.handle_status()
        if change is not None:
            return await handler.handle_control(change)
        return await handler.handle_list()
    except LifxCtlError as e:
        stop(str(e))
        return 1
    finally:
        await coordinator.destroy()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="LIFX Local + Cloud Control Tool",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("--list", action="store_true", help="List discovered lights (default action).")
    parser.add_argument("--status", action="store_true", help="Show connection state.")
    parser.add_argument(
        "--troubleshoot", action="store_true", help="Show connection problems and hints."
    )

    control_group = parser.add_argument_group("Light Control")
    control_group.add_argument(
        "--id", dest="ids", action="append", default=[], help="Light id (serial) to control; repeatable."
    )
    control_group.add_argument("--all", action="store_true", help="Control every discovered light.")
    control_group.add_argument("--on", action="store_true", help="Turn the light(s) on.")
    control_group.add_argument("--off", action="store_true", help="Turn the light(s) off.")
    control_group.add_argument("--brightness", type=int, help="Set brightness (0-100).")
    control_group.add_argument("--hue", type=int, help="Set hue (0-360 degrees).")
    control_group.add_argument("--saturation", type=int, help="Set saturation (0-100; 0 = white).")
    control_group.add_argument("--kelvin", type=int, help="Set color temperature (2500-9000).")
    control_group.add_argument("--duration", type=int, help="Fade time in milliseconds (default: 1000).")

    conn_group = parser.add_argument_group("Connection")
    conn_group.add_argument("--token", default=None, help="LIFX cloud API token (or set LIFX_API_TOKEN).")
    conn_group.add_argument("--no-lan", action="store_true", help="Skip LAN discovery; use the cloud only.")
    conn_group.add_argument(
        "--lan-timeout", type=int, default=None, help="LAN discovery timeout in ms (default: 5000)."
    )
    parser.add_argument("--verbose", action="store_true", help="Show debug logs and wire payloads")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    configure(verbose=args.verbose)

    if args.on and args.off:
        warn("--on and --off cannot be combined")
        return 2

    try:
        args.ids = [normalize_light_id(light_id) for light_id in args.ids]
        change = build_change(args)
    except ValueError as e:
        warn(f"Invalid control arguments: {e}")
        return 2

    if change is not None and not (args.ids or args.all):
        warn("Control flags require --id or --all")
        return 2
    if (args.ids or args.all) and change is None:
        warn("--id/--all require a control flag (--on, --off, --brightness, --hue, --saturation, --kelvin)")
        return 2

    overrides = {
        "http_api_token": args.token,
        "lan_timeout_ms": args.lan_timeout,
        "enable_lan_discovery": False if args.no_lan else None,
    }
    try:
        config = load_config(overrides=overrides)
    except ConfigError as e:
        warn(str(e))
        return 2
    debug(f"Config: LAN={config.enable_lan_discovery}, HTTP={'yes' if config.http_api_token else 'no'}")

    try:
        return asyncio.run(run(args, config, change))
    except KeyboardInterrupt:
        warn("\nInterrupted.")
        return 1


if __name__ == "__main__":
    if sys.version_info < (3, 11):
        print("This tool requires Python 3.11+.")
        sys.exit(1)
    sys.exit(main())
