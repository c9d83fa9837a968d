#!/usr/bin/env python3
"""client key storage for paired TVs"""

import base64
import logging
from typing import Protocol

from PySide6.QtCore import QSettings  # pylint: disable=no-name-in-module


class ClientKeyStore(Protocol):
    """where pairing keys live between runs"""

    def get(self, device_id: str) -> str | None:
        """stored key for the TV or None"""

    def set(self, device_id: str, key: str) -> None:
        """store or replace the key for the TV"""

    def remove(self, device_id: str) -> None:
        """forget the key; missing keys are not an error"""


def _settings_key(device_id: str) -> str:
    # QSettings treats '/' as a group separator and ids carry uuids/urls
    encoded = base64.urlsafe_b64encode(device_id.encode("utf-8")).decode("ascii").rstrip("=")
    return f"clientkeys/{encoded}"


class QSettingsKeyStore:
    """keys kept in the application's QSettings"""

    def __init__(self, cparser: QSettings):
        self.cparser = cparser

    def get(self, device_id: str) -> str | None:
        """stored key for the TV or None"""
        self.cparser.sync()
        value = self.cparser.value(_settings_key(device_id), defaultValue=None)
        return str(value) if value else None

    def set(self, device_id: str, key: str) -> None:
        """store or replace the key for the TV"""
        self.cparser.setValue(_settings_key(device_id), key)
        self.cparser.sync()
        logging.debug("Stored client key for %s", device_id)

    def remove(self, device_id: str) -> None:
        """forget the key"""
        self.cparser.remove(_settings_key(device_id))
        self.cparser.sync()
        logging.debug("Removed client key for %s", device_id)


class MemoryKeyStore:
    """in-process store, nothing survives a restart"""

    def __init__(self):
        self.keys: dict[str, str] = {}

    def get(self, device_id: str) -> str | None:
        """stored key for the TV or None"""
        return self.keys.get(device_id)

    def set(self, device_id: str, key: str) -> None:
        """store or replace the key for the TV"""
        self.keys[device_id] = key

    def remove(self, device_id: str) -> None:
        """forget the key"""
        self.keys.pop(device_id, None)
