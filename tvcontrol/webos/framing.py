#!/usr/bin/env python3
"""
WebSocket frame codec

Client side framing for the TV's command channel. Outbound frames are always
masked with a fresh key. The inbound side is deliberately small: the TV never
negotiates extensions, so there is no compression or reserved bit handling.
"""

from __future__ import annotations

import asyncio
import logging
import os
import struct
from typing import Awaitable, Callable

from .types import InvalidResponseError, TransportError

logger = logging.getLogger(__name__)

OP_CONTINUATION = 0x0
OP_TEXT = 0x1
OP_BINARY = 0x2
OP_CLOSE = 0x8
OP_PING = 0x9
OP_PONG = 0xA

FIN_BIT = 0x80
MASK_BIT = 0x80
MAX_MESSAGE_SIZE = 16 * 1024 * 1024

ControlHandler = Callable[[int, bytes], Awaitable[None]]


def mask_payload(payload: bytes, key: bytes) -> bytes:
    """XOR each byte with the repeating 4-byte key (also unmasks)"""
    return bytes(byte ^ key[index % 4] for index, byte in enumerate(payload))


def _frame(opcode: int, payload: bytes) -> bytes:
    header = bytearray([FIN_BIT | opcode])
    length = len(payload)
    if length <= 125:
        header.append(MASK_BIT | length)
    elif length <= 0xFFFF:
        header.append(MASK_BIT | 126)
        header += struct.pack(">H", length)
    else:
        header.append(MASK_BIT | 127)
        header += struct.pack(">Q", length)

    key = os.urandom(4)
    return bytes(header) + key + mask_payload(payload, key)


def encode_text(payload: str) -> bytes:
    """Encode a single masked text frame"""
    return _frame(OP_TEXT, payload.encode("utf-8"))


def encode_control(opcode: int, payload: bytes = b"") -> bytes:
    """Encode a masked control frame (pong, close)"""
    if len(payload) > 125:
        raise ValueError("control frame payload must be 125 bytes or less")
    return _frame(opcode, payload)


async def read_frame(reader: asyncio.StreamReader) -> tuple[bool, int, bytes]:
    """Read one frame and return (fin, opcode, unmasked payload)"""
    first, second = await reader.readexactly(2)
    fin = bool(first & FIN_BIT)
    opcode = first & 0x0F
    masked = bool(second & MASK_BIT)
    length = second & 0x7F

    if length == 126:
        (length,) = struct.unpack(">H", await reader.readexactly(2))
    elif length == 127:
        (length,) = struct.unpack(">Q", await reader.readexactly(8))

    if length > MAX_MESSAGE_SIZE:
        raise InvalidResponseError(f"frame of {length} bytes exceeds limit")

    key = await reader.readexactly(4) if masked else b""
    payload = await reader.readexactly(length) if length else b""
    if masked:
        payload = mask_payload(payload, key)
    return fin, opcode, payload


async def read_message(
    reader: asyncio.StreamReader, on_control: ControlHandler | None = None
) -> str:
    """
    Read frames until a complete data message is assembled

    Continuation frames are joined, pings are handed to on_control so the
    caller can answer with a pong, and a close frame ends the channel.
    """
    fragments: list[bytes] = []
    total = 0
    while True:
        fin, opcode, payload = await read_frame(reader)

        if opcode == OP_CLOSE:
            code = struct.unpack(">H", payload[:2])[0] if len(payload) >= 2 else None
            logger.debug("Close frame received (code %s)", code)
            if on_control:
                await on_control(opcode, payload[:2])
            raise TransportError(f"Connection closed by TV (code {code})")

        if opcode in (OP_PING, OP_PONG):
            if opcode == OP_PING and on_control:
                await on_control(opcode, payload)
            continue

        if opcode not in (OP_TEXT, OP_BINARY, OP_CONTINUATION):
            raise InvalidResponseError(f"unknown frame opcode {opcode:#x}")
        if opcode == OP_CONTINUATION and not fragments:
            raise InvalidResponseError("continuation frame without a message")
        if opcode != OP_CONTINUATION and fragments:
            raise InvalidResponseError("new message started before the previous finished")

        total += len(payload)
        if total > MAX_MESSAGE_SIZE:
            raise InvalidResponseError(f"message of {total} bytes exceeds limit")
        fragments.append(payload)

        if fin:
            return b"".join(fragments).decode("utf-8", errors="replace")
