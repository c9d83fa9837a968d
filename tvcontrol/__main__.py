#!/usr/bin/env python3
"""tvcontrol as run via python -m"""

import argparse
import asyncio
import logging
import platform
import sys
from typing import Any, Awaitable, Callable

import tvcontrol
import tvcontrol.bootstrap
import tvcontrol.config
import tvcontrol.keystore
from tvcontrol.controller import RemoteController
from tvcontrol.wakeonlan import WakeOnLAN
from tvcontrol.webos.connection import ConnectionManager
from tvcontrol.webos.discovery import DiscoveryAggregator
from tvcontrol.webos.session import SSAPSession
from tvcontrol.webos.types import TVControlError

SessionAction = Callable[[SSAPSession, str | None], Awaitable[Any]]

COMMANDS: dict[str, SessionAction] = {
    "power-off": lambda session, _arg: session.power_off(),
    "volume-up": lambda session, _arg: session.volume_up(),
    "volume-down": lambda session, _arg: session.volume_down(),
    "mute": lambda session, _arg: session.toggle_mute(),
    "channel-up": lambda session, _arg: session.channel_up(),
    "channel-down": lambda session, _arg: session.channel_down(),
    "button": lambda session, arg: session.send_button(arg),
    "launch": lambda session, arg: session.launch_app(arg),
    "input": lambda session, arg: session.switch_input(arg),
}
NEEDS_ARGUMENT = {"button", "launch", "input"}


def build_parser() -> argparse.ArgumentParser:
    """command line definition"""
    parser = argparse.ArgumentParser(prog="tvcontrol", description="Control LG webOS TVs")
    parser.add_argument("--verbose", "-v", action="store_true", help="Also log to stderr")
    subparsers = parser.add_subparsers(dest="action", required=True)

    discover = subparsers.add_parser("discover", help="List TVs on the network")
    discover.add_argument("--timeout", type=float, default=None, help="Seconds to listen")

    pair = subparsers.add_parser("pair", help="Pair with a TV")
    pair.add_argument("host")
    pair.add_argument("--force", action="store_true", help="Ignore any stored client key")

    send = subparsers.add_parser("send", help="Send a command")
    send.add_argument("host")
    send.add_argument("command", choices=sorted(COMMANDS))
    send.add_argument("argument", nargs="?", default=None)

    state = subparsers.add_parser("state", help="Show volume, app and power state")
    state.add_argument("host")

    wake = subparsers.add_parser("wake", help="Send a Wake-on-LAN packet")
    wake.add_argument("mac")
    return parser


def build_controller(config: tvcontrol.config.ConfigFile) -> RemoteController:
    """wire up the engine from the configuration"""
    keystore = tvcontrol.keystore.QSettingsKeyStore(config.cparser)
    manager = ConnectionManager(keystore, settings=config.connection_settings())
    aggregator = DiscoveryAggregator(settings=config.discovery_settings())
    return RemoteController(manager, aggregator, wol=WakeOnLAN(), config=config)


async def discover(controller: RemoteController, timeout: float | None) -> int:
    """run discovery and print what was found"""
    await controller.aggregator.start()
    try:
        if timeout is None:
            await controller.aggregator.wait()
        else:
            await asyncio.sleep(timeout)
    finally:
        await controller.aggregator.stop()

    print(controller.discovery_status)
    for device in controller.aggregator.devices:
        print(f"{device.name}\t{device.host}:{device.port}\t{device.id}")
    return 0


def print_state(controller: RemoteController) -> None:
    """dump the runtime state"""
    state = controller.runtime_state
    print(f"volume: {state.volume}")
    print(f"muted: {state.is_muted}")
    print(f"input: {state.current_input}")
    print(f"app: {state.foreground_app_id}")
    print(f"power: {state.power_state}")


async def run_action(args: argparse.Namespace, controller: RemoteController) -> int:
    """dispatch one command line action"""
    if args.action == "discover":
        return await discover(controller, args.timeout)

    if args.action == "wake":
        try:
            await controller.wol.send(args.mac)
        except TVControlError as err:
            print(err, file=sys.stderr)
            return 1
        print(f"Wake-on-LAN packet sent to {args.mac}")
        return 0

    if args.action == "send" and args.command in NEEDS_ARGUMENT and not args.argument:
        print(f"{args.command} needs an argument", file=sys.stderr)
        return 2

    if args.action == "pair" and args.force:
        controller.manager.keystore.remove(f"manual-{args.host.strip()}")

    try:
        if not await controller.connect_manual_ip(args.host):
            print(controller.last_error, file=sys.stderr)
            return 1

        if args.action == "pair":
            print(f"Paired with {controller.selected_device.name}")
        elif args.action == "state":
            print_state(controller)
        elif args.action == "send":
            action = COMMANDS[args.command]
            response = await controller.run(lambda session: action(session, args.argument))
            if response is None:
                print(controller.last_error, file=sys.stderr)
                return 1
            if response.get("type") == "error":
                print(response.get("error"), file=sys.stderr)
                return 1
            print(f"{args.command}: ok")
        return 0
    finally:
        await controller.close()


def main(argv: list[str] | None = None) -> int:  # pragma: no cover
    """main entrypoint"""
    args = build_parser().parse_args(argv)
    tvcontrol.bootstrap.set_qt_names()
    tvcontrol.bootstrap.setuplogging(rotate=True)
    if args.verbose:
        logging.getLogger().addHandler(logging.StreamHandler())
    logging.info("starting up v%s on %s", tvcontrol.__version__, platform.platform())

    config = tvcontrol.config.ConfigFile()
    logging.getLogger().setLevel(config.loglevel)
    controller = build_controller(config)
    try:
        return asyncio.run(run_action(args, controller))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
