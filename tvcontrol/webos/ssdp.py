#!/usr/bin/env python3
"""
SSDP probe and response handling

Builds the M-SEARCH query, recognises LG/webOS answers and turns them into
Device records. The socket helper binds to one interface so the multicast
leaves through the network the TV is on.
"""

from __future__ import annotations

import logging
import re
import socket
import urllib.parse

from .types import DEFAULT_DEVICE_PORT, SSDP_GROUP, SSDP_PORT, SSDP_TTL, Device

logger = logging.getLogger(__name__)

LG_MARKERS = ("webos", "lge", " lg", "lgsmarttv")
BODY_MARKERS = ("webos", "lge", "lgsmarttv")
FRIENDLY_NAME_RE = re.compile(r"<friendlyName>(.*?)</friendlyName>", re.IGNORECASE | re.DOTALL)


def build_msearch(search_target: str = "ssdp:all", mx: int = 3) -> bytes:  # pylint: disable=invalid-name
    """M-SEARCH request for the SSDP multicast group"""
    return (
        "M-SEARCH * HTTP/1.1\r\n"
        f"HOST: {SSDP_GROUP}:{SSDP_PORT}\r\n"
        'MAN: "ssdp:discover"\r\n'
        f"MX: {mx}\r\n"
        f"ST: {search_target}\r\n\r\n"
    ).encode("ascii")


def parse_headers(text: str) -> dict[str, str]:
    """header lines into a dict with lowercased names; the status line is skipped"""
    headers: dict[str, str] = {}
    for line in text.split("\r\n"):
        if ":" not in line:
            continue
        name, value = line.split(":", 1)
        headers[name.strip().lower()] = value.strip()
    return headers


def is_lg_response(headers: dict[str, str], body: str) -> bool:
    """fingerprint check for LG/webOS; some firmware says LG rather than LGE"""
    fingerprint = " ".join(
        headers.get(name, "") for name in ("server", "st", "usn", "location")
    ).lower()
    lowered = body.lower()
    return any(marker in fingerprint for marker in LG_MARKERS) or any(
        marker in lowered for marker in BODY_MARKERS
    )


def parse_response(data: bytes) -> tuple[Device, str] | None:
    """Turn one datagram into (device, location url), or None if it is not a TV"""
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return None

    headers = parse_headers(text)
    logger.debug(
        "SSDP response server: %s | st: %s | location: %s",
        headers.get("server", "(no server)"),
        headers.get("st", "(no st)"),
        headers.get("location", "(no location)"),
    )
    location = headers.get("location")
    if not location:
        return None
    if not is_lg_response(headers, text):
        logger.debug("SSDP filtered (not LG/webOS): %s", headers.get("server"))
        return None

    parts = urllib.parse.urlsplit(location)
    host = parts.hostname
    if not host:
        return None
    try:
        port = parts.port or DEFAULT_DEVICE_PORT
    except ValueError:
        port = DEFAULT_DEVICE_PORT

    usn = headers.get("usn") or host
    name = "LG webOS TV" if "webOS" in headers.get("server", "") else "LG TV"
    return Device(id=f"ssdp-{usn}-{host}", name=name, host=host, port=port), location


def extract_friendly_name(xml: str) -> str | None:
    """friendlyName from a UPnP device description"""
    if match := FRIENDLY_NAME_RE.search(xml):
        return match.group(1).strip() or None
    return None


def open_search_socket(address: str, ttl: int = SSDP_TTL) -> socket.socket:
    """non-blocking UDP socket bound to the given interface address"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((address, 0))
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(address))
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, ttl)
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock
