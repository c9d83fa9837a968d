#!/usr/bin/env python3
"""HTTP Upgrade handshake for the TV's WebSocket endpoints"""

from __future__ import annotations

import asyncio
import base64
import logging
import os

from .types import TransportError

logger = logging.getLogger(__name__)

HEADER_TERMINATOR = b"\r\n\r\n"
MAX_HEADER_SIZE = 16 * 1024


def generate_key() -> str:
    """random 16 bytes, base64 encoded"""
    return base64.b64encode(os.urandom(16)).decode("ascii")


def build_request(host: str, port: int, path: str, key: str) -> bytes:
    """Build the upgrade request. No extension headers are offered."""
    if not path.startswith("/"):
        path = f"/{path}"
    lines = [
        f"GET {path} HTTP/1.1",
        f"Host: {host}:{port}",
        "Upgrade: websocket",
        "Connection: Upgrade",
        f"Sec-WebSocket-Key: {key}",
        "Sec-WebSocket-Version: 13",
    ]
    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")


async def negotiate(  # pylint: disable=too-many-arguments
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    host: str,
    port: int,
    path: str = "/",
) -> dict[str, str]:
    """
    Run the upgrade exchange on an already open stream

    Only the response headers are consumed; any bytes the server sends after
    the blank line stay in the reader for the frame decoder. Returns the
    response headers with lowercased names.
    """
    request = build_request(host, port, path, generate_key())
    try:
        writer.write(request)
        await writer.drain()
    except OSError as err:
        raise TransportError(str(err)) from err

    try:
        raw = await reader.readuntil(HEADER_TERMINATOR)
    except asyncio.IncompleteReadError as err:
        raise TransportError("Connection closed during WebSocket handshake") from err
    except asyncio.LimitOverrunError as err:
        raise TransportError("WebSocket handshake response too large") from err
    except OSError as err:
        raise TransportError(str(err)) from err

    if len(raw) > MAX_HEADER_SIZE:
        raise TransportError("WebSocket handshake response too large")

    text = raw.decode("utf-8", errors="replace")
    status_line, *header_lines = text.split("\r\n")
    parts = status_line.split(" ", 2)
    if len(parts) < 2 or parts[1] != "101":
        raise TransportError(f"WebSocket upgrade rejected: {status_line[:120]}")

    headers: dict[str, str] = {}
    for line in header_lines:
        if ":" in line:
            name, value = line.split(":", 1)
            headers[name.strip().lower()] = value.strip()
    logger.debug("WebSocket upgrade accepted by %s:%s%s", host, port, path)
    return headers
