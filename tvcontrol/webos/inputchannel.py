#!/usr/bin/env python3
"""Pointer/button input over the TV's network input socket"""

from __future__ import annotations

import logging

from .transport import RemoteInputTransport

logger = logging.getLogger(__name__)


class InputChannel:
    """Writes the line oriented input protocol to a RemoteInputTransport"""

    def __init__(self, transport: RemoteInputTransport):
        self.transport = transport

    @staticmethod
    def format_message(msgtype: str, **fields: object) -> str:
        """type line, one line per field, blank line terminator"""
        lines = [f"type:{msgtype}"]
        lines.extend(f"{key}:{value}" for key, value in fields.items())
        return "\n".join(lines) + "\n\n"

    async def button(self, name: str) -> None:
        """press a remote button (UP, DOWN, ENTER, BACK, HOME...)"""
        await self.transport.send(self.format_message("button", name=name.upper()))

    async def click(self) -> None:
        """pointer click"""
        await self.transport.send(self.format_message("click"))

    async def move(self, dx: int, dy: int, down: bool = False) -> None:
        """relative pointer move"""
        await self.transport.send(
            self.format_message("move", dx=int(dx), dy=int(dy), down=int(down))
        )

    async def scroll(self, dx: int, dy: int) -> None:
        """scroll by the given amount"""
        await self.transport.send(self.format_message("scroll", dx=int(dx), dy=int(dy)))

    async def close(self) -> None:
        """release the input socket"""
        await self.transport.disconnect()
        logger.debug("Input channel closed")
