#!/usr/bin/env python3
"""
Discovery Aggregator

Merges two independent device sources into one list: zeroconf browsing of
the LG service types and an SSDP M-SEARCH sweep. SSDP hits start with a
placeholder name that is replaced once the UPnP description has been
fetched.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import threading
from typing import Any, Callable

import aiohttp
from zeroconf import Zeroconf

import tvcontrol.hostmeta
from tvcontrol import mdns_discovery

from . import ssdp
from .types import SSDP_GROUP, SSDP_PORT, Device, DiscoverySettings

logger = logging.getLogger(__name__)

STATUS_BROWSING = "Browsing Bonjour and SSDP services…"
STATUS_NO_INTERFACE = "No active network interface found. Join the TV's network and discover again."
STATUS_NO_SSDP = "No TVs found via SSDP. Try manual IP entry."
STATUS_MDNS_FAILED = "Bonjour discovery failed"
STATUS_SSDP_FAILED = "Could not open the SSDP socket. Check the network connection or try manual IP entry."


class SSDPResponseProtocol(asyncio.DatagramProtocol):
    """Hands every unicast SSDP reply to the aggregator"""

    def __init__(self, aggregator: "DiscoveryAggregator"):
        self.aggregator = aggregator

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        try:
            self.aggregator.handle_ssdp_datagram(data)
        except Exception as err:  # pylint: disable=broad-exception-caught
            logger.debug("Failed to handle SSDP response from %s: %s", addr, err)

    def error_received(self, exc: Exception) -> None:
        logger.debug("SSDP socket error: %s", exc)


class DiscoveryAggregator:  # pylint: disable=too-many-instance-attributes
    """Single deduplicated TV list fed by mDNS and SSDP"""

    def __init__(
        self,
        settings: DiscoverySettings | None = None,
        interface_lookup: Callable[[], str | None] = tvcontrol.hostmeta.active_interface_address,
        zeroconf_factory: Callable[[], Any] = Zeroconf,
    ):
        self.settings = settings or DiscoverySettings()
        self.interface_lookup = interface_lookup
        self.zeroconf_factory = zeroconf_factory
        self.on_devices_updated: Callable[[list[Device]], None] | None = None
        self.on_status_changed: Callable[[str], None] | None = None
        self._lock = threading.Lock()
        self._devices: dict[str, Device] = {}
        self._enriched: set[str] = set()
        self._fetching: set[str] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._zeroconf: Any = None
        self._browser: Any = None
        self._ssdp_task: asyncio.Task | None = None
        self._fetch_tasks: set[asyncio.Task] = set()
        self._stopping = False

    @property
    def devices(self) -> list[Device]:
        """current devices sorted by name"""
        with self._lock:
            return self._sorted()

    def _sorted(self) -> list[Device]:
        return sorted(self._devices.values(), key=lambda device: device.name)

    @staticmethod
    def _notify(callback: Callable | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception("Observer %s failed", callback)

    def _status(self, message: str) -> None:
        logger.info("Discovery: %s", message)
        self._notify(self.on_status_changed, message)

    def _emit(self, devices: list[Device], status: bool = True) -> None:
        self._notify(self.on_devices_updated, devices)
        if status:
            self._status(f"Found {len(devices)} TV(s)")

    async def start(self) -> None:
        """Clear the list and start both sources"""
        await self.stop()
        with self._lock:
            self._devices.clear()
            self._enriched.clear()
            self._fetching.clear()
        self._loop = asyncio.get_running_loop()
        self._stopping = False
        self._status(STATUS_BROWSING)
        self._start_mdns()
        self._ssdp_task = asyncio.create_task(self._run_ssdp())

    async def stop(self) -> None:
        """Stop browsing, end the SSDP sweep and cancel outstanding fetches"""
        self._stopping = True
        if self._browser is not None:
            try:
                self._browser.cancel()
            except Exception as err:  # pylint: disable=broad-exception-caught
                logger.debug("Browser cancel failed: %s", err)
            self._browser = None
        if self._zeroconf is not None:
            try:
                self._zeroconf.close()
            except Exception as err:  # pylint: disable=broad-exception-caught
                logger.debug("Zeroconf close failed: %s", err)
            self._zeroconf = None

        tasks = list(self._fetch_tasks)
        if self._ssdp_task is not None:
            tasks.append(self._ssdp_task)
            self._ssdp_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._fetch_tasks.clear()

    async def wait(self) -> None:
        """wait for the SSDP sweep to finish"""
        if self._ssdp_task is not None:
            await asyncio.gather(self._ssdp_task, return_exceptions=True)

    def upsert(self, device: Device) -> None:
        """Insert or replace by id and publish the sorted list"""
        with self._lock:
            self._devices[device.id] = device
            snapshot = self._sorted()
        self._emit(snapshot)

    def remove_service(self, instance_name: str) -> None:
        """Drop every device advertised under the service instance name"""
        prefix = f"{instance_name}-"
        with self._lock:
            for device_id in [key for key in self._devices if key.startswith(prefix)]:
                del self._devices[device_id]
            snapshot = self._sorted()
        self._emit(snapshot, status=False)

    def _start_mdns(self) -> None:
        try:
            self._zeroconf = self.zeroconf_factory()
            listener = mdns_discovery.ServiceDiscoveryListener(
                on_resolved=self._mdns_resolved, on_removed=self._mdns_removed
            )
            self._browser = mdns_discovery.browse(
                self._zeroconf, listener, self.settings.service_types
            )
        except Exception as err:  # pylint: disable=broad-exception-caught
            logger.error("mDNS discovery failed: %s", err)
            self._status(STATUS_MDNS_FAILED)

    def _call_in_loop(self, func: Callable, *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed() or self._stopping:
            return
        loop.call_soon_threadsafe(func, *args)

    def _mdns_resolved(self, service: mdns_discovery.DiscoveredService) -> None:
        self._call_in_loop(self.handle_service_resolved, service)

    def _mdns_removed(self, instance_name: str) -> None:
        self._call_in_loop(self.remove_service, instance_name)

    def handle_service_resolved(self, service: mdns_discovery.DiscoveredService) -> None:
        """Upsert a resolved zeroconf advertisement"""
        device = Device(
            id=f"{service.instance_name}-{service.host}",
            name=service.instance_name,
            host=service.host,
            port=service.port,
        )
        logger.info("mDNS resolved: %s -> %s:%s", device.name, device.host, device.port)
        self.upsert(device)

    async def _run_ssdp(self) -> None:
        loop = asyncio.get_running_loop()
        # netifaces and the hostname fallback can block on DNS
        address = await loop.run_in_executor(None, self.interface_lookup)
        if not address:
            logger.warning("No active interface, skipping SSDP")
            self._status(STATUS_NO_INTERFACE)
            return
        logger.info("SSDP outgoing interface: %s", address)

        try:
            sock = ssdp.open_search_socket(address, self.settings.ssdp_ttl)
            transport, _protocol = await loop.create_datagram_endpoint(
                lambda: SSDPResponseProtocol(self), sock=sock
            )
        except OSError as err:
            logger.error("Could not open SSDP socket on %s: %s", address, err)
            self._status(STATUS_SSDP_FAILED)
            return

        try:
            transport.sendto(ssdp.build_msearch(), (SSDP_GROUP, SSDP_PORT))
            logger.info("M-SEARCH sent to %s:%s", SSDP_GROUP, SSDP_PORT)
            deadline = loop.time() + self.settings.ssdp_window
            while not self._stopping:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                await asyncio.sleep(min(1.0, remaining))
        finally:
            transport.close()

        with self._lock:
            count = len(self._devices)
        logger.info("SSDP discovery finished, %d device(s) known", count)
        if count == 0 and not self._stopping:
            self._status(STATUS_NO_SSDP)

    def handle_ssdp_datagram(self, data: bytes) -> None:
        """Upsert an SSDP reply and schedule its friendly-name lookup"""
        parsed = ssdp.parse_response(data)
        if parsed is None:
            return
        device, location = parsed

        with self._lock:
            existing = self._devices.get(device.id)
            if existing is not None and device.id in self._enriched:
                device = dataclasses.replace(device, name=existing.name)
            needs_fetch = device.id not in self._enriched and device.id not in self._fetching
            if needs_fetch:
                self._fetching.add(device.id)
        logger.info("SSDP found %s at %s:%s", device.name, device.host, device.port)
        self.upsert(device)
        if needs_fetch:
            self._schedule_enrichment(device.id, location)

    def _schedule_enrichment(self, device_id: str, location: str) -> None:
        task = asyncio.get_running_loop().create_task(self._enrich(device_id, location))
        self._fetch_tasks.add(task)
        task.add_done_callback(self._fetch_tasks.discard)

    async def _fetch_description(self, location: str) -> str | None:
        timeout = aiohttp.ClientTimeout(total=self.settings.fetch_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(location) as response:
                    if response.status != 200:
                        logger.debug("%s returned status %d", location, response.status)
                        return None
                    return await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            logger.debug("Fetching %s failed: %s", location, err)
        return None

    async def _enrich(self, device_id: str, location: str) -> None:
        try:
            xml = await self._fetch_description(location)
        finally:
            with self._lock:
                self._fetching.discard(device_id)

        name = ssdp.extract_friendly_name(xml) if xml else None
        if not name:
            return

        with self._lock:
            existing = self._devices.get(device_id)
            if existing is None:
                return
            self._devices[device_id] = dataclasses.replace(existing, name=name)
            self._enriched.add(device_id)
            snapshot = self._sorted()
        logger.info("Friendly name for %s: %s", device_id, name)
        self._emit(snapshot)
