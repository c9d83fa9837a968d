#!/usr/bin/env python3
"""
LG webOS SSAP Package

This package contains the protocol engine for LG webOS TVs: the WebSocket
transport, the SSAP session, the connection manager and discovery.
"""

# Re-export main components for easy importing
from .connection import ConnectionManager
from .discovery import DiscoveryAggregator
from .session import SSAPSession
from .types import (
    ConnectionState,
    ConnectionStatus,
    Device,
    RuntimeState,
    TVControlError,
)

__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    "Device",
    "DiscoveryAggregator",
    "RuntimeState",
    "SSAPSession",
    "TVControlError",
]
