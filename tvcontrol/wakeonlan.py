#!/usr/bin/env python3
"""Wake-on-LAN magic packets"""

import asyncio
import functools
import logging

import wakeonlan

from tvcontrol.webos.types import TransportError

BROADCAST_ADDRESS = "255.255.255.255"
WOL_PORT = 9
INVALID_MAC = "Invalid MAC address format."


class WakeOnLAN:  # pylint: disable=too-few-public-methods
    """broadcast sender"""

    def __init__(self, address: str = BROADCAST_ADDRESS, port: int = WOL_PORT):
        self.address = address
        self.port = port

    async def send(self, mac: str) -> None:
        """wake the TV with the given MAC address (aa:bb:cc:dd:ee:ff or aa-bb-...)"""
        sender = functools.partial(
            wakeonlan.send_magic_packet, mac.strip(), ip_address=self.address, port=self.port
        )
        try:
            await asyncio.get_running_loop().run_in_executor(None, sender)
        except ValueError as err:
            raise TransportError(INVALID_MAC) from err
        except OSError as err:
            raise TransportError(str(err)) from err
        logging.info("WOL packet sent to %s", mac)
