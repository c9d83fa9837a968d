#!/usr/bin/env python3
"""deal with IP address malarky"""

# pylint: disable=c-extension-no-member

import datetime
import logging
import socket

import netifaces  # pylint: disable=import-error

HOSTIP = None
TIMESTAMP = None
TIMEDELTA = datetime.timedelta(minutes=10)


def _usable(addr: str | None) -> bool:
    return bool(addr) and not addr.startswith(("127.", "169.254."))


def trynetifaces() -> str | None:
    """IPv4 address of the interface holding the default route"""
    try:
        gws = netifaces.gateways()  # pylint: disable=no-member
        defnic = gws["default"][netifaces.AF_INET][1]  # pylint: disable=no-member
        defnicipinfo = netifaces.ifaddresses(defnic).setdefault(netifaces.AF_INET, [{"addr": None}])  # pylint: disable=no-member
        addr = defnicipinfo[0]["addr"]
        if _usable(addr):
            return addr
    except Exception as error:  # pylint: disable = broad-except
        logging.debug("No default gateway interface via netifaces: %s", error)
    return None


def tryinterfaces() -> str | None:
    """first non-loopback IPv4 address on any interface"""
    try:
        for iface in netifaces.interfaces():  # pylint: disable=no-member
            for info in netifaces.ifaddresses(iface).get(netifaces.AF_INET, []):  # pylint: disable=no-member
                addr = info.get("addr")
                if _usable(addr):
                    logging.debug("Using %s on %s", addr, iface)
                    return addr
    except Exception as error:  # pylint: disable = broad-except
        logging.error("Scanning interfaces via netifaces failed: %s", error)
    return None


def trysocket() -> str | None:
    """resolve our own hostname; skipped if it lands on loopback"""
    try:
        addr = socket.gethostbyname(socket.gethostname())
        if _usable(addr):
            return addr
        logging.debug("Socket resolved to %s, not usable for multicast", addr)
    except Exception as error:  # pylint: disable = broad-except
        logging.error("Getting IP information via socket failed: %s", error)
    return None


def active_interface_address() -> str | None:
    """IPv4 address to send SSDP probes from, or None when not on a network"""
    global HOSTIP, TIMESTAMP  # pylint: disable=global-statement

    if HOSTIP and TIMESTAMP and datetime.datetime.now() - TIMESTAMP <= TIMEDELTA:
        return HOSTIP

    logging.debug("Looking up the active network interface")
    HOSTIP = trynetifaces() or tryinterfaces() or trysocket()
    TIMESTAMP = datetime.datetime.now() if HOSTIP else None
    return HOSTIP


def reset_cache() -> None:
    """forget the cached address, e.g. after a network change"""
    global HOSTIP, TIMESTAMP  # pylint: disable=global-statement
    HOSTIP = None
    TIMESTAMP = None
