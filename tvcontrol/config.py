#!/usr/bin/env python3
"""
config file parsing/handling
"""

import contextlib
import json
import logging
import pathlib
import sys
import time

from PySide6.QtCore import (  # pylint: disable=no-name-in-module
    QCoreApplication,
    QSettings,
    QStandardPaths,
)

import tvcontrol
from tvcontrol.webos.types import (
    CONNECT_TIMEOUT,
    FETCH_TIMEOUT,
    PLAIN_PORT,
    RECONNECT_ATTEMPTS,
    REGISTER_TIMEOUT,
    REQUEST_TIMEOUT,
    SECURE_PORT,
    SSDP_TTL,
    SSDP_WINDOW,
    ConnectionSettings,
    Device,
    DiscoverySettings,
)


class ConfigFile:  # pylint: disable=too-many-instance-attributes
    """read and write the QSettings store"""

    def __init__(
        self,
        logpath: str | None = None,
        reset: bool = False,
        testmode: bool = False,
    ):
        self.version: str = tvcontrol.__version__
        self.testmode: bool = testmode
        self.basedir: pathlib.Path = pathlib.Path(
            QStandardPaths.standardLocations(QStandardPaths.DocumentsLocation)[0],
            QCoreApplication.applicationName(),
        )
        self.logpath: pathlib.Path = self.basedir.joinpath("logs", "debug.log")
        if logpath:
            self.logpath = pathlib.Path(logpath)

        logging.info("Logpath: %s", self.logpath)

        self.qsettingsformat: QSettings.Format = QSettings.NativeFormat
        if sys.platform == "win32":
            self.qsettingsformat = QSettings.IniFormat

        self.cparser: QSettings = QSettings(
            self.qsettingsformat,
            QSettings.UserScope,
            QCoreApplication.organizationName(),
            QCoreApplication.applicationName(),
        )
        logging.info("configuration: %s", self.cparser.fileName())
        self.loglevel: str = "DEBUG"
        self.testdir: pathlib.Path | None = None

        self._force_set_statics()
        self.defaults()
        if reset:
            self.cparser.clear()
            self._force_set_statics()
            self.save()
        else:
            self.get()

    def _force_set_statics(self) -> None:
        """make sure these are always set"""
        if self.testmode:
            self.cparser.setValue("testmode/enabled", True)

    def reset(self) -> None:
        """forcibly go back to defaults"""
        logging.debug("config reset")
        self.__init__(logpath=str(self.logpath), reset=True, testmode=self.testmode)  # pylint: disable=unnecessary-dunder-call

    def get(self) -> None:
        """refresh values"""
        self.cparser.sync()
        with contextlib.suppress(TypeError):
            self.loglevel = self.cparser.value("settings/loglevel") or "DEBUG"

    def defaults(self) -> None:
        """default values for things"""
        logging.debug("set defaults")

        settings = QSettings(
            self.qsettingsformat,
            QSettings.SystemScope,
            QCoreApplication.organizationName(),
            QCoreApplication.applicationName(),
        )

        self._defaults_general_settings(settings)
        self._defaults_webos(settings)
        self._defaults_discovery(settings)

    def _defaults_general_settings(self, settings: QSettings) -> None:
        """default values for general settings"""
        settings.setValue("settings/loglevel", self.loglevel)

    @staticmethod
    def _defaults_webos(settings: QSettings) -> None:
        """default values for the TV connection"""
        settings.setValue("webos/secure_port", SECURE_PORT)
        settings.setValue("webos/plain_port", PLAIN_PORT)
        settings.setValue("webos/request_timeout", REQUEST_TIMEOUT)
        settings.setValue("webos/register_timeout", REGISTER_TIMEOUT)
        settings.setValue("webos/connect_timeout", CONNECT_TIMEOUT)
        settings.setValue("webos/reconnect_attempts", RECONNECT_ATTEMPTS)

    @staticmethod
    def _defaults_discovery(settings: QSettings) -> None:
        """default values for discovery"""
        settings.setValue("discovery/ssdp_window", SSDP_WINDOW)
        settings.setValue("discovery/ssdp_ttl", SSDP_TTL)
        settings.setValue("discovery/fetch_timeout", FETCH_TIMEOUT)

    def put(self, loglevel: str) -> None:
        """Save the configuration file"""
        self.loglevel = loglevel
        self.save()

    def save(self) -> None:
        """save the current set"""
        self.cparser.setValue("settings/lastsavedate", time.strftime("%Y%m%d%H%M%S"))
        self.cparser.setValue("settings/loglevel", self.loglevel)
        self.cparser.sync()

    def connection_settings(self) -> ConnectionSettings:
        """settings for the connection manager"""
        self.cparser.sync()
        settings = ConnectionSettings()
        with contextlib.suppress(TypeError, ValueError):
            settings.secure_port = self.cparser.value("webos/secure_port", type=int)
            settings.plain_port = self.cparser.value("webos/plain_port", type=int)
            settings.request_timeout = self.cparser.value("webos/request_timeout", type=float)
            settings.register_timeout = self.cparser.value("webos/register_timeout", type=float)
            settings.connect_timeout = self.cparser.value("webos/connect_timeout", type=float)
            settings.reconnect_attempts = self.cparser.value("webos/reconnect_attempts", type=int)
        return settings

    def discovery_settings(self) -> DiscoverySettings:
        """settings for the discovery aggregator"""
        self.cparser.sync()
        settings = DiscoverySettings()
        with contextlib.suppress(TypeError, ValueError):
            settings.ssdp_window = self.cparser.value("discovery/ssdp_window", type=float)
            settings.ssdp_ttl = self.cparser.value("discovery/ssdp_ttl", type=int)
            settings.fetch_timeout = self.cparser.value("discovery/fetch_timeout", type=float)
        return settings

    def saved_device(self) -> Device | None:
        """the last TV that was paired, if any"""
        self.cparser.sync()
        raw = self.cparser.value("controller/saved_device", defaultValue=None)
        if not raw:
            return None
        try:
            return Device.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as error:
            logging.error("Ignoring unreadable saved device: %s", error)
            return None

    def save_device(self, device: Device) -> None:
        """remember the TV for the next start"""
        self.cparser.setValue("controller/saved_device", json.dumps(device.to_dict()))
        self.cparser.sync()

    def clear_saved_device(self) -> None:
        """forget the remembered TV"""
        self.cparser.remove("controller/saved_device")
        self.cparser.sync()
