#!/usr/bin/env python3
"""
webOS Connection Manager

This module owns the connection lifecycle for a single TV: endpoint fallback
(secure port first, then plain), pairing with the stored client key, state
reporting and bounded exponential backoff reconnects after channel loss.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable

from .session import SSAPSession
from .transport import WebSocketTransport
from .types import (
    CONNECTING,
    DISCONNECTED,
    DISCOVERING,
    PAIRED,
    ConnectionSettings,
    ConnectionState,
    Device,
    NotConnectedError,
    RuntimeState,
)

if TYPE_CHECKING:
    from tvcontrol.keystore import ClientKeyStore

logger = logging.getLogger(__name__)

TransportFactory = Callable[[str, int, bool], WebSocketTransport]


class ConnectionManager:  # pylint: disable=too-many-instance-attributes
    """Connects to one TV at a time and keeps it connected"""

    def __init__(
        self,
        keystore: "ClientKeyStore",
        settings: ConnectionSettings | None = None,
        transport_factory: TransportFactory | None = None,
    ):
        self.keystore = keystore
        self.settings = settings or ConnectionSettings()
        self.transport_factory: TransportFactory = transport_factory or self._default_transport
        self.state: ConnectionState = DISCONNECTED
        self.device: Device | None = None
        self.session: SSAPSession | None = None
        self.on_state_change: Callable[[ConnectionState], None] | None = None
        self.on_runtime_state: Callable[[RuntimeState], None] | None = None
        self.on_last_error: Callable[[str], None] | None = None
        self._connect_lock = asyncio.Lock()
        self._reconnect_task: asyncio.Task | None = None
        self._user_connect_task: asyncio.Task | None = None
        self._aborted_connect: asyncio.Task | None = None
        self._sleep = asyncio.sleep

    def _default_transport(self, host: str, port: int, secure: bool) -> WebSocketTransport:
        return WebSocketTransport(
            host, port, secure=secure, connect_timeout=self.settings.connect_timeout
        )

    def endpoints(self) -> list[tuple[bool, int]]:
        """(secure, port) pairs in the order they are tried"""
        return [(True, self.settings.secure_port), (False, self.settings.plain_port)]

    @staticmethod
    def _notify(callback: Callable | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception("Observer %s failed", callback)

    def _set_state(self, state: ConnectionState) -> None:
        self.state = state
        logger.debug("Connection state: %s", state.label)
        self._notify(self.on_state_change, state)

    def _report_error(self, message: str) -> None:
        self._notify(self.on_last_error, message)

    @property
    def active_session(self) -> SSAPSession:
        """the paired session, or NotConnectedError"""
        if self.session is None or not self.session.is_ready:
            raise NotConnectedError()
        return self.session

    @property
    def reconnecting(self) -> bool:
        """True while a reconnect sequence is scheduled or running"""
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def begin_discovery(self) -> None:
        """flag that discovery is running"""
        self._set_state(DISCOVERING)

    async def connect(self, device: Device, force_pairing: bool = False) -> None:
        """
        Connect and pair, cancelling any reconnect in progress

        The attempt runs as its own task so disconnect() can abort it; an
        aborted attempt raises NotConnectedError here.
        """
        self._cancel_reconnect()
        task = asyncio.create_task(self._connect(device, force_pairing))
        self._user_connect_task = task
        try:
            await task
        except asyncio.CancelledError:
            if self._aborted_connect is task:
                raise NotConnectedError("Connection attempt cancelled.") from None
            raise
        finally:
            if self._user_connect_task is task:
                self._user_connect_task = None
            if self._aborted_connect is task:
                self._aborted_connect = None

    async def _abort_user_connect(self) -> None:
        task, self._user_connect_task = self._user_connect_task, None
        if task is None or task.done():
            return
        self._aborted_connect = task
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("Connect attempt aborted")

    async def _connect(self, device: Device, force_pairing: bool = False) -> None:
        async with self._connect_lock:
            await self._close_session()
            self.device = device
            self._set_state(CONNECTING)
            logger.info("Connecting to %s (%s)", device.name, device.host)

            last_error: Exception = NotConnectedError()
            for secure, port in self.endpoints():
                transport = self.transport_factory(device.host, port, secure)
                session = SSAPSession(
                    transport,
                    request_timeout=self.settings.request_timeout,
                    register_timeout=self.settings.register_timeout,
                    on_runtime_state=self._on_runtime_state,
                    on_closed=self._on_session_closed,
                )
                try:
                    logger.info("Trying %s", transport.url)
                    await transport.connect()
                    session.start()
                    client_key = None if force_pairing else self.keystore.get(device.id)
                    new_key = await session.register(client_key)
                    if new_key:
                        self.keystore.set(device.id, new_key)
                        logger.info("Client key saved for %s", device.id)
                except asyncio.CancelledError:
                    await session.close()
                    raise
                except Exception as err:  # pylint: disable=broad-exception-caught
                    logger.warning("Failed %s: %s", transport.url, err)
                    last_error = err
                    await session.close()
                    continue

                self.session = session
                self._set_state(PAIRED)
                logger.info("Paired with %s at %s", device.name, transport.url)
                return

            message = str(last_error)
            self._set_state(ConnectionState.error(message))
            self._report_error(message)
            raise last_error

    async def _close_session(self) -> None:
        session, self.session = self.session, None
        if session:
            await session.close()

    async def disconnect(self) -> None:
        """User disconnect. Aborts a connect in flight and never triggers a reconnect."""
        reconnect = self._reconnect_task
        self._cancel_reconnect()
        if reconnect is not None and reconnect is not asyncio.current_task():
            await asyncio.gather(reconnect, return_exceptions=True)
        await self._abort_user_connect()
        await self._close_session()
        self._set_state(DISCONNECTED)
        logger.info("Disconnected")

    async def query_runtime_state(self) -> RuntimeState:
        """refresh the runtime state through the active session"""
        return await self.active_session.query_runtime_state()

    def _on_runtime_state(self, state: RuntimeState) -> None:
        self._notify(self.on_runtime_state, state)

    def _on_session_closed(self, session: SSAPSession, error: Exception) -> None:
        if session is not self.session:
            return
        self.session = None
        logger.error("Connection to TV lost: %s", error)
        self._set_state(DISCONNECTED)
        self._report_error(str(error))
        self._schedule_reconnect()

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _schedule_reconnect(self) -> None:
        if self.device is None or self.settings.reconnect_attempts <= 0 or self.reconnecting:
            return
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect(self.device)
        )

    async def _reconnect(self, device: Device) -> None:
        attempts = self.settings.reconnect_attempts
        try:
            for attempt in range(1, attempts + 1):
                delay = 2**attempt
                logger.info("Reconnect attempt %d/%d in %ds", attempt, attempts, delay)
                await self._sleep(delay)
                try:
                    await self._connect(device)
                except asyncio.CancelledError:
                    raise
                except Exception as err:  # pylint: disable=broad-exception-caught
                    logger.warning("Reconnect attempt %d failed: %s", attempt, err)
                    self._report_error(f"Reconnect attempt {attempt}/{attempts} failed: {err}")
                    continue

                logger.info("Reconnected on attempt %d", attempt)
                if self.session:
                    try:
                        await self.session.query_runtime_state()
                    except Exception as err:  # pylint: disable=broad-exception-caught
                        logger.debug("Runtime state refresh after reconnect failed: %s", err)
                return
            logger.error("Giving up after %d reconnect attempts", attempts)
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None
