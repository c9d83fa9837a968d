#!/usr/bin/env python3
"""
Shared data types, constants and exceptions for the webOS SSAP engine

This module contains the data classes, protocol constants and the exception
hierarchy used throughout the webOS implementation.
"""

import asyncio
import dataclasses
import enum
import threading
from dataclasses import dataclass
from typing import Any

# Endpoints
SECURE_PORT = 3001
PLAIN_PORT = 3000
DEFAULT_DEVICE_PORT = 3000

# Timing
CONNECT_TIMEOUT = 5.0
REQUEST_TIMEOUT = 10.0
REGISTER_TIMEOUT = 60.0
RECONNECT_ATTEMPTS = 5

# Discovery
MDNS_SERVICE_TYPES = ("_lgsmarttv._tcp.local.", "_lgtv2._tcp.local.")
SSDP_GROUP = "239.255.255.250"
SSDP_PORT = 1900
SSDP_TTL = 4
SSDP_WINDOW = 6.0
FETCH_TIMEOUT = 5.0


@dataclass(frozen=True)
class Device:
    """A TV found by discovery or entered by hand"""

    id: str  # pylint: disable=invalid-name
    name: str
    host: str
    port: int = DEFAULT_DEVICE_PORT
    mac_address: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """serialize for persistence"""
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Device":
        """rebuild a device saved with to_dict"""
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            host=str(data["host"]),
            port=int(data.get("port") or DEFAULT_DEVICE_PORT),
            mac_address=data.get("mac_address"),
        )


@dataclass
class RuntimeState:
    """Last known TV state. Every field stays None until observed."""

    volume: int | None = None
    is_muted: bool | None = None
    current_input: str | None = None
    foreground_app_id: str | None = None
    power_state: str | None = None

    def merge(self, **fields: Any) -> bool:
        """overwrite the given non-None fields, return True if anything changed"""
        changed = False
        for name, value in fields.items():
            if value is None:
                continue
            if getattr(self, name) != value:
                setattr(self, name, value)
                changed = True
        return changed

    def copy(self) -> "RuntimeState":
        """snapshot for observers"""
        return dataclasses.replace(self)


class ConnectionStatus(enum.Enum):
    """Connection lifecycle positions"""

    DISCONNECTED = "disconnected"
    DISCOVERING = "discovering"
    CONNECTING = "connecting"
    PAIRED = "paired"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionState:
    """Current connection status; ERROR carries a message"""

    status: ConnectionStatus
    message: str | None = None

    @classmethod
    def error(cls, message: str) -> "ConnectionState":
        """build an error state"""
        return cls(ConnectionStatus.ERROR, message)

    @property
    def label(self) -> str:
        """human readable status"""
        if self.status is ConnectionStatus.ERROR:
            return f"Error: {self.message}"
        if self.status is ConnectionStatus.PAIRED:
            return "Connected"
        return self.status.value.capitalize()

    @property
    def is_connected(self) -> bool:
        """True once paired"""
        return self.status is ConnectionStatus.PAIRED


DISCONNECTED = ConnectionState(ConnectionStatus.DISCONNECTED)
DISCOVERING = ConnectionState(ConnectionStatus.DISCOVERING)
CONNECTING = ConnectionState(ConnectionStatus.CONNECTING)
PAIRED = ConnectionState(ConnectionStatus.PAIRED)


@dataclass
class ConnectionSettings:  # pylint: disable=too-many-instance-attributes
    """Tunables for the connection manager and its sessions"""

    secure_port: int = SECURE_PORT
    plain_port: int = PLAIN_PORT
    connect_timeout: float = CONNECT_TIMEOUT
    request_timeout: float = REQUEST_TIMEOUT
    register_timeout: float = REGISTER_TIMEOUT
    reconnect_attempts: int = RECONNECT_ATTEMPTS


@dataclass
class DiscoverySettings:
    """Tunables for the discovery aggregator"""

    service_types: tuple[str, ...] = MDNS_SERVICE_TYPES
    ssdp_window: float = SSDP_WINDOW
    ssdp_ttl: int = SSDP_TTL
    fetch_timeout: float = FETCH_TIMEOUT


class TVControlError(Exception):
    """Base exception for webOS control errors"""


class NotConnectedError(TVControlError):
    """No usable channel to the TV"""

    def __init__(self, message: str = "The TV is not connected."):
        super().__init__(message)


class TransportError(TVControlError):
    """Network level failure"""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Network transport error: {detail}")


class AuthFailedError(TVControlError):
    """Pairing was refused or answered with something unexpected"""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"TV pairing/authentication failed: {detail}")


class InvalidResponseError(TVControlError):
    """The TV sent something that could not be understood"""

    def __init__(self, detail: str | None = None):
        self.detail = detail
        message = "Invalid response from TV."
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class RequestTimeoutError(TVControlError):
    """No answer arrived in time"""

    def __init__(self, message: str = "TV request timed out."):
        super().__init__(message)


class UnsupportedError(TVControlError):
    """Operation not available on this TV or channel"""

    def __init__(self, feature: str):
        self.feature = feature
        super().__init__(f"Feature not supported on this TV: {feature}")


class OneShot:
    """
    Completion slot that accepts exactly one result.

    Several independent sources may race to complete the same operation
    (a response and a timer, or a connect attempt and a cancellation).
    The first call to resolve() or fail() takes the future out of the slot
    under the lock; later calls find it empty and return False.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._waiter: asyncio.Future = asyncio.get_running_loop().create_future()
        self._future: asyncio.Future | None = self._waiter

    def _take(self) -> asyncio.Future | None:
        with self._lock:
            future, self._future = self._future, None
        if future is None or future.done():
            return None
        return future

    def resolve(self, value: Any = None) -> bool:
        """complete successfully; False if already completed"""
        if future := self._take():
            future.set_result(value)
            return True
        return False

    def fail(self, error: BaseException) -> bool:
        """complete with an error; False if already completed"""
        if future := self._take():
            future.set_exception(error)
            return True
        return False

    @property
    def consumed(self) -> bool:
        """True once a result was delivered"""
        with self._lock:
            return self._future is None

    def __await__(self):
        return self._waiter.__await__()


def json_str(value: Any) -> str | None:
    """string variant or None"""
    return value if isinstance(value, str) else None


def json_int(value: Any) -> int | None:
    """integer variant (floats truncate, bools do not count) or None"""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return None


def json_bool(value: Any) -> bool | None:
    """boolean variant or None"""
    return value if isinstance(value, bool) else None


def json_object(value: Any) -> dict[str, Any] | None:
    """object variant or None"""
    return value if isinstance(value, dict) else None


def json_array(value: Any) -> list[Any] | None:
    """array variant or None"""
    return value if isinstance(value, list) else None
