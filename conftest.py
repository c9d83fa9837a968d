#!/usr/bin/env python3
"""pytest fixtures"""

import asyncio
import contextlib
import json
import logging
import os
import pathlib
import shutil
import sys
import tempfile

import pytest
from PySide6.QtCore import (  # pylint: disable=import-error, no-name-in-module
    QCoreApplication,
    QSettings,
)

import tvcontrol.bootstrap
import tvcontrol.config
from tvcontrol.webos.types import NotConnectedError

# DO NOT CHANGE THIS TO BE com.github.tvcontrol
# otherwise your actual bits will disappear!
DOMAIN = "com.github.tvcontrol.testsuite"


def reboot_macosx_prefs():
    """work around Mac OS X's preference caching"""
    if sys.platform == "darwin":
        os.system(f"defaults delete {DOMAIN}")


@pytest.fixture
def bootstrap():
    """bootstrap a configuration"""
    with contextlib.suppress(PermissionError):  # Windows blows
        with tempfile.TemporaryDirectory(ignore_cleanup_errors=True) as newpath:
            rmdir = newpath
            tvcontrol.bootstrap.set_qt_names(domain=DOMAIN, appname="testsuite")
            config = tvcontrol.config.ConfigFile(logpath=newpath, testmode=True)
            config.cparser.sync()
            config.testdir = pathlib.Path(newpath)

            yield config
            if pathlib.Path(rmdir).exists():
                shutil.rmtree(rmdir)


#
# OS X has a lot of caching wrt preference files
# so we have do a lot of work to make sure they
# don't stick around
#
@pytest.fixture(autouse=True, scope="function")
def clear_old_testsuite():
    """clear out old testsuite configs"""
    if sys.platform == "win32":
        qsettingsformat = QSettings.IniFormat
    else:
        qsettingsformat = QSettings.NativeFormat

    tvcontrol.bootstrap.set_qt_names(domain=DOMAIN, appname="testsuite")
    config = QSettings(
        qsettingsformat,
        QSettings.SystemScope,
        QCoreApplication.organizationName(),
        QCoreApplication.applicationName(),
    )
    config.clear()
    config.sync()

    config = QSettings(
        qsettingsformat,
        QSettings.UserScope,
        QCoreApplication.organizationName(),
        QCoreApplication.applicationName(),
    )
    config.clear()
    config.sync()
    filename = pathlib.Path(config.fileName())
    del config
    if filename.exists():
        filename.unlink()
    reboot_macosx_prefs()
    if filename.exists():
        logging.error("Still exists, wtf?")
    yield filename
    if filename.exists():
        filename.unlink()
    reboot_macosx_prefs()


class FakeTransport:  # pylint: disable=too-many-instance-attributes
    """In-memory stand-in for WebSocketTransport

    Messages the test pushes with feed() come out of receive(); everything
    the code under test sends is recorded as parsed JSON where possible.
    """

    def __init__(self, host="192.168.1.50", port=3000, secure=False, connect_error=None):
        self.host = host
        self.port = port
        self.secure = secure
        self.connect_error = connect_error
        self.sent: list[str] = []
        self.connected = False
        self.disconnect_calls = 0
        self.on_send = None
        self._inbox: asyncio.Queue = asyncio.Queue()

    @property
    def url(self):
        """endpoint url"""
        scheme = "wss" if self.secure else "ws"
        return f"{scheme}://{self.host}:{self.port}/"

    @property
    def is_connected(self):
        """connected flag"""
        return self.connected

    async def connect(self):
        """connect, or raise the configured error"""
        if self.connect_error:
            raise self.connect_error
        self.connected = True

    async def send(self, text):
        """record outbound text"""
        if not self.connected:
            raise NotConnectedError()
        self.sent.append(text)
        if self.on_send:
            self.on_send(self, text)

    async def receive(self):
        """next fed message, or raise a fed exception"""
        item = await self._inbox.get()
        if isinstance(item, BaseException):
            raise item
        return item

    def feed(self, message):
        """queue an inbound message (dict, str or exception)"""
        if isinstance(message, dict):
            message = json.dumps(message)
        self._inbox.put_nowait(message)

    async def disconnect(self):
        """disconnect"""
        self.connected = False
        self.disconnect_calls += 1

    def sent_json(self):
        """outbound messages decoded"""
        return [json.loads(text) for text in self.sent]


@pytest.fixture
def fake_transport():
    """a FakeTransport for session tests"""
    return FakeTransport()


@pytest.fixture
def fake_transport_class():
    """the FakeTransport class, for factories that build several"""
    return FakeTransport
