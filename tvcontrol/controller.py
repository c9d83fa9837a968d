#!/usr/bin/env python3
"""
Remote controller

Glue between discovery, the connection manager and the user: keeps the
device list and selection, remembers the last paired TV, handles manual IP
entry and surfaces the last error as a message.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from tvcontrol.wakeonlan import WakeOnLAN
from tvcontrol.webos.connection import ConnectionManager
from tvcontrol.webos.discovery import DiscoveryAggregator
from tvcontrol.webos.session import SSAPSession
from tvcontrol.webos.types import (
    DEFAULT_DEVICE_PORT,
    DISCONNECTED,
    PAIRED,
    ConnectionState,
    Device,
    RuntimeState,
)

if TYPE_CHECKING:
    from tvcontrol.config import ConfigFile

NO_MAC_MESSAGE = (
    "MAC address not available from discovery. Wake-on-LAN may not be possible for this model."
)


class RemoteController:  # pylint: disable=too-many-instance-attributes
    """Device selection and user level actions"""

    def __init__(
        self,
        manager: ConnectionManager,
        aggregator: DiscoveryAggregator,
        wol: WakeOnLAN | None = None,
        config: "ConfigFile | None" = None,
    ):
        self.manager = manager
        self.aggregator = aggregator
        self.wol = wol or WakeOnLAN()
        self.config = config
        self.devices: list[Device] = []
        self.selected_id: str | None = None
        self.connection_state: ConnectionState = DISCONNECTED
        self.runtime_state = RuntimeState()
        self.discovery_status = "Idle"
        self.last_error: str | None = None
        self._tasks: set[asyncio.Task] = set()

        self.aggregator.on_devices_updated = self._on_devices_updated
        self.aggregator.on_status_changed = self._on_status_changed
        self.manager.on_state_change = self._on_state_change
        self.manager.on_runtime_state = self._on_runtime_state
        self.manager.on_last_error = self._on_last_error

    @property
    def selected_device(self) -> Device | None:
        """the selected device, if it is in the list"""
        return next((device for device in self.devices if device.id == self.selected_id), None)

    def select(self, device_id: str) -> None:
        """select a device by id"""
        self.selected_id = device_id

    def _add_device(self, device: Device) -> None:
        if all(existing.id != device.id for existing in self.devices):
            self.devices.append(device)
            self.devices.sort(key=lambda item: item.name)

    def _on_devices_updated(self, devices: list[Device]) -> None:
        # keep manual and saved entries that discovery does not know about
        known = {device.id for device in devices}
        extras = [device for device in self.devices if device.id not in known]
        self.devices = sorted(devices + extras, key=lambda item: item.name)
        if self.selected_id is None and self.devices:
            self.selected_id = self.devices[0].id

    def _on_status_changed(self, status: str) -> None:
        self.discovery_status = status

    def _on_state_change(self, state: ConnectionState) -> None:
        self.connection_state = state
        if state == PAIRED and self.config and (device := self.manager.device):
            self.config.save_device(device)

    def _on_runtime_state(self, state: RuntimeState) -> None:
        self.runtime_state = state

    def _on_last_error(self, message: str) -> None:
        self.last_error = message

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def load_saved_device(self) -> Device | None:
        """put the remembered TV in the list and select it if nothing is selected"""
        device = self.config.saved_device() if self.config else None
        if device:
            self._add_device(device)
            if self.selected_id is None:
                self.selected_id = device.id
        return device

    async def start_discovery(self) -> None:
        """Restore the saved TV, auto-connect to it and start discovery"""
        self.load_saved_device()
        self.manager.begin_discovery()
        if device := self.selected_device:
            self.discovery_status = f"Auto-connecting to {device.name}…"
            self._spawn(self.connect_selected())
        await self.aggregator.start()

    async def stop_discovery(self) -> None:
        """stop both discovery sources"""
        await self.aggregator.stop()

    async def connect_selected(self, force_pairing: bool = False) -> bool:
        """connect to the selected TV and read its state once"""
        device = self.selected_device
        if device is None:
            self.last_error = "Select a TV first."
            return False
        try:
            await self.manager.connect(device, force_pairing=force_pairing)
        except Exception as err:  # pylint: disable=broad-exception-caught
            self.last_error = str(err)
            return False
        self.last_error = None
        await self.refresh_runtime_state()
        return True

    async def connect_manual_ip(self, host: str) -> bool:
        """add a TV by address and connect to it"""
        host = host.strip()
        if not host:
            self.last_error = "Enter a TV IP address first."
            return False
        device = Device(
            id=f"manual-{host}", name=f"LG TV ({host})", host=host, port=DEFAULT_DEVICE_PORT
        )
        self._add_device(device)
        self.selected_id = device.id
        return await self.connect_selected()

    async def disconnect(self) -> None:
        """user disconnect"""
        await self.manager.disconnect()

    async def repair(self) -> bool:
        """pair again, ignoring the stored key"""
        return await self.connect_selected(force_pairing=True)

    def forget_selected_auth(self) -> None:
        """drop the stored client key for the selected TV"""
        if device := self.selected_device:
            try:
                self.manager.keystore.remove(device.id)
            except Exception as err:  # pylint: disable=broad-exception-caught
                self.last_error = str(err)

    async def wake_selected(self) -> bool:
        """send a Wake-on-LAN packet to the selected TV"""
        device = self.selected_device
        if device is None or not device.mac_address:
            self.last_error = NO_MAC_MESSAGE
            return False
        try:
            await self.wol.send(device.mac_address)
        except Exception as err:  # pylint: disable=broad-exception-caught
            self.last_error = str(err)
            return False
        return True

    async def refresh_runtime_state(self) -> RuntimeState | None:
        """query the TV for volume, app and power state"""
        try:
            self.runtime_state = await self.manager.query_runtime_state()
        except Exception as err:  # pylint: disable=broad-exception-caught
            self.last_error = str(err)
            return None
        return self.runtime_state

    async def run(self, action: Callable[[SSAPSession], Awaitable[Any]]) -> Any:
        """run a session command, recording any failure as last_error"""
        try:
            return await action(self.manager.active_session)
        except Exception as err:  # pylint: disable=broad-exception-caught
            logging.error("Command failed: %s", err)
            self.last_error = str(err)
            return None

    async def close(self) -> None:
        """stop discovery, disconnect and wait for background work"""
        await self.aggregator.stop()
        await self.manager.disconnect()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
