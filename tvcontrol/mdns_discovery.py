#!/usr/bin/env python3
"""mDNS/Bonjour service discovery helper"""

import logging
import socket
from typing import Callable, NamedTuple

from zeroconf import ServiceBrowser, ServiceListener, Zeroconf

DEFAULT_PORT = 3000


class DiscoveredService(NamedTuple):
    """Information about a discovered service"""

    name: str
    instance_name: str
    host: str
    port: int
    addresses: list[str]
    properties: dict[bytes, bytes]


def instance_name(type_: str, name: str) -> str:
    """strip the service type suffix: 'Living Room._lgtv2._tcp.local.' -> 'Living Room'"""
    suffix = f".{type_}"
    if name.endswith(suffix):
        return name[: -len(suffix)]
    return name


class ServiceDiscoveryListener(ServiceListener):
    """Listener that resolves services and reports them through callbacks

    zeroconf calls these methods on its own thread; the callbacks are
    responsible for getting back to the event loop.
    """

    def __init__(
        self,
        on_resolved: Callable[[DiscoveredService], None],
        on_removed: Callable[[str], None] | None = None,
    ):
        self.on_resolved = on_resolved
        self.on_removed = on_removed

    def update_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        """Service updated"""
        self._resolve(zc, type_, name)

    def remove_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        """Service removed"""
        logging.debug("Service removed: %s", name)
        if self.on_removed:
            self.on_removed(instance_name(type_, name))

    def add_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        """Service discovered"""
        self._resolve(zc, type_, name)

    def _resolve(self, zc: Zeroconf, type_: str, name: str) -> None:
        info = zc.get_service_info(type_, name)
        if not info:
            logging.debug("Could not resolve %s", name)
            return

        # IPv4 only, inet_ntoa cannot format the 16 byte forms
        addresses = [socket.inet_ntoa(addr) for addr in info.addresses if len(addr) == 4]
        host = (info.server or "").rstrip(".")
        if not host and addresses:
            host = addresses[0]
        if not host:
            logging.debug("No host for %s", name)
            return

        service = DiscoveredService(
            name=name,
            instance_name=instance_name(type_, name),
            host=host,
            port=info.port or DEFAULT_PORT,
            addresses=addresses,
            properties=info.properties,
        )
        logging.debug("Discovered service: %s at %s:%s", name, host, service.port)
        self.on_resolved(service)


def browse(
    zeroconf: Zeroconf,
    listener: ServiceDiscoveryListener,
    service_types: tuple[str, ...],
) -> ServiceBrowser:
    """start browsing the TV service types"""
    return ServiceBrowser(zeroconf, list(service_types), listener)
