#!/usr/bin/env python3
"""
WebSocket transports for the TV

WebSocketTransport is the full duplex command channel used by the SSAP
session. RemoteInputTransport shares the handshake and send path but is
write-only, matching the TV's pointer input socket.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import ssl
import struct
import urllib.parse

from . import framing, handshake
from .types import (
    CONNECT_TIMEOUT,
    NotConnectedError,
    OneShot,
    TransportError,
    TVControlError,
    UnsupportedError,
)

logger = logging.getLogger(__name__)


def insecure_ssl_context() -> ssl.SSLContext:
    """TLS context that accepts the TV's self-signed certificate"""
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


class WebSocketTransport:  # pylint: disable=too-many-instance-attributes
    """Minimal WebSocket client: connect, send text, receive text, disconnect"""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        host: str,
        port: int,
        path: str = "/",
        secure: bool = False,
        connect_timeout: float = CONNECT_TIMEOUT,
    ):
        self.host = host
        self.port = port
        self.path = path or "/"
        self.secure = secure
        self.connect_timeout = connect_timeout
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._slot: OneShot | None = None
        self._connect_task: asyncio.Task | None = None
        self._write_lock = asyncio.Lock()

    @property
    def url(self) -> str:
        """endpoint url, for logs and error messages"""
        scheme = "wss" if self.secure else "ws"
        return f"{scheme}://{self.host}:{self.port}{self.path}"

    @property
    def is_connected(self) -> bool:
        """True between a successful connect() and disconnect()"""
        return self._writer is not None

    async def connect(self) -> None:
        """Open the socket and run the upgrade handshake"""
        if self.is_connected:
            return
        if self._slot is not None:
            raise TransportError(f"connect to {self.url} already in progress")

        slot = OneShot()
        self._slot = slot
        self._connect_task = asyncio.create_task(self._establish(slot))
        try:
            self._reader, self._writer = await slot
        finally:
            self._slot = None
            self._connect_task = None
        logger.debug("Connected to %s", self.url)

    async def _establish(self, slot: OneShot) -> None:
        writer: asyncio.StreamWriter | None = None
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    self.host,
                    self.port,
                    ssl=insecure_ssl_context() if self.secure else None,
                ),
                timeout=self.connect_timeout,
            )
            await asyncio.wait_for(
                handshake.negotiate(reader, writer, self.host, self.port, self.path),
                timeout=self.connect_timeout,
            )
        except asyncio.CancelledError:
            slot.fail(NotConnectedError("Connection attempt cancelled."))
            await self._close_stream(writer)
            raise
        except asyncio.TimeoutError:
            slot.fail(TransportError(f"Timed out connecting to {self.url}"))
            await self._close_stream(writer)
            return
        except TVControlError as err:
            slot.fail(err)
            await self._close_stream(writer)
            return
        except OSError as err:
            slot.fail(TransportError(f"{self.url}: {err}"))
            await self._close_stream(writer)
            return
        except Exception as err:  # pylint: disable=broad-exception-caught
            logger.exception("Unexpected failure connecting to %s", self.url)
            slot.fail(TransportError(str(err)))
            await self._close_stream(writer)
            return

        if not slot.resolve((reader, writer)):
            # disconnect() won the race
            await self._close_stream(writer)

    @staticmethod
    async def _close_stream(writer: asyncio.StreamWriter | None) -> None:
        if writer is None:
            return
        with contextlib.suppress(Exception):
            writer.close()
            await writer.wait_closed()

    async def send(self, text: str) -> None:
        """Send one text message"""
        await self._write(framing.encode_text(text))

    async def _write(self, data: bytes) -> None:
        if self._writer is None:
            raise NotConnectedError()
        async with self._write_lock:
            writer = self._writer
            if writer is None:
                raise NotConnectedError()
            try:
                writer.write(data)
                await writer.drain()
            except (OSError, RuntimeError) as err:
                raise TransportError(str(err) or "write failed") from err

    async def _on_control(self, opcode: int, payload: bytes) -> None:
        if opcode == framing.OP_PING:
            await self._write(framing.encode_control(framing.OP_PONG, payload))
        elif opcode == framing.OP_CLOSE:
            with contextlib.suppress(TVControlError):
                await self._write(framing.encode_control(framing.OP_CLOSE, payload))

    async def receive(self) -> str:
        """Wait for the next complete text message"""
        if self._reader is None:
            raise NotConnectedError()
        try:
            return await framing.read_message(self._reader, self._on_control)
        except asyncio.IncompleteReadError as err:
            raise TransportError("Connection closed by TV") from err
        except OSError as err:
            raise TransportError(str(err) or "read failed") from err

    async def disconnect(self) -> None:
        """Cancel any connect in flight and release the stream. Safe to repeat."""
        if self._slot is not None:
            self._slot.fail(NotConnectedError("Connection attempt cancelled."))
        if self._connect_task is not None:
            self._connect_task.cancel()

        writer, self._writer, self._reader = self._writer, None, None
        if writer is None:
            return
        with contextlib.suppress(Exception):
            writer.write(framing.encode_control(framing.OP_CLOSE, struct.pack(">H", 1000)))
        await self._close_stream(writer)
        logger.debug("Disconnected from %s", self.url)


class RemoteInputTransport(WebSocketTransport):
    """Send-only transport for the pointer input socket"""

    @classmethod
    def from_url(cls, url: str, connect_timeout: float = CONNECT_TIMEOUT) -> "RemoteInputTransport":
        """build from the ws:// or wss:// url the TV hands out"""
        parts = urllib.parse.urlsplit(url)
        if parts.scheme not in ("ws", "wss") or not parts.hostname:
            raise TransportError(f"Unusable input socket url: {url}")
        secure = parts.scheme == "wss"
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"
        return cls(
            parts.hostname,
            parts.port or (443 if secure else 80),
            path=path,
            secure=secure,
            connect_timeout=connect_timeout,
        )

    async def receive(self) -> str:
        raise UnsupportedError("receive on remote input socket")
