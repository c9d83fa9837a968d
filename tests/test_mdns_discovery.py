#!/usr/bin/env python3
"""test mDNS discovery module"""

from unittest.mock import MagicMock, patch

import tvcontrol.mdns_discovery

LGTV2 = "_lgtv2._tcp.local."


def make_info(server="lgwebostv.local.", port=3000, addresses=None):
    """mock zeroconf ServiceInfo"""
    info = MagicMock()
    info.server = server
    info.port = port
    info.addresses = [b"\xc0\xa8\x01\x32"] if addresses is None else addresses
    info.properties = {b"model": b"OLED55"}
    return info


def test_instance_name():
    """the service type suffix is stripped"""
    assert tvcontrol.mdns_discovery.instance_name(LGTV2, f"Living Room.{LGTV2}") == "Living Room"
    assert tvcontrol.mdns_discovery.instance_name(LGTV2, "Bedroom") == "Bedroom"


def test_listener_add_service():
    """resolved services are reported through the callback"""
    found = []
    listener = tvcontrol.mdns_discovery.ServiceDiscoveryListener(on_resolved=found.append)
    mock_zc = MagicMock()
    mock_zc.get_service_info.return_value = make_info()

    listener.add_service(mock_zc, LGTV2, f"Living Room.{LGTV2}")

    assert len(found) == 1
    assert found[0].instance_name == "Living Room"
    assert found[0].host == "lgwebostv.local"
    assert found[0].port == 3000
    assert found[0].addresses == ["192.168.1.50"]


def test_listener_update_service_resolves_again():
    """updates go through the same path as adds"""
    found = []
    listener = tvcontrol.mdns_discovery.ServiceDiscoveryListener(on_resolved=found.append)
    mock_zc = MagicMock()
    mock_zc.get_service_info.return_value = make_info(port=3001)
    listener.update_service(mock_zc, LGTV2, f"TV.{LGTV2}")
    assert found[0].port == 3001


def test_listener_no_info():
    """unresolvable services are skipped"""
    found = []
    listener = tvcontrol.mdns_discovery.ServiceDiscoveryListener(on_resolved=found.append)
    mock_zc = MagicMock()
    mock_zc.get_service_info.return_value = None
    listener.add_service(mock_zc, LGTV2, "TV")
    assert not found


def test_listener_falls_back_to_address():
    """no server name uses the first IPv4 address and ignores IPv6"""
    found = []
    listener = tvcontrol.mdns_discovery.ServiceDiscoveryListener(on_resolved=found.append)
    mock_zc = MagicMock()
    mock_zc.get_service_info.return_value = make_info(
        server=None, port=0, addresses=[b"\xfe\x80" + b"\x00" * 14, b"\x0a\x00\x00\x07"]
    )
    listener.add_service(mock_zc, LGTV2, "TV")
    assert found[0].host == "10.0.0.7"
    assert found[0].addresses == ["10.0.0.7"]
    assert found[0].port == tvcontrol.mdns_discovery.DEFAULT_PORT


def test_listener_no_host():
    """nothing to connect to, nothing reported"""
    found = []
    listener = tvcontrol.mdns_discovery.ServiceDiscoveryListener(on_resolved=found.append)
    mock_zc = MagicMock()
    mock_zc.get_service_info.return_value = make_info(server="", addresses=[])
    listener.add_service(mock_zc, LGTV2, "TV")
    assert not found


def test_listener_remove_service():
    """removals report the instance name"""
    removed = []
    listener = tvcontrol.mdns_discovery.ServiceDiscoveryListener(
        on_resolved=MagicMock(), on_removed=removed.append
    )
    listener.remove_service(MagicMock(), LGTV2, f"Living Room.{LGTV2}")
    assert removed == ["Living Room"]


def test_listener_remove_without_callback():
    """removal with no callback is harmless"""
    listener = tvcontrol.mdns_discovery.ServiceDiscoveryListener(on_resolved=MagicMock())
    listener.remove_service(MagicMock(), LGTV2, "TV")


def test_browse_all_types():
    """one browser covers every service type"""
    with patch("tvcontrol.mdns_discovery.ServiceBrowser") as mock_browser_class:
        mock_zc = MagicMock()
        listener = tvcontrol.mdns_discovery.ServiceDiscoveryListener(on_resolved=MagicMock())
        browser = tvcontrol.mdns_discovery.browse(
            mock_zc, listener, ("_lgsmarttv._tcp.local.", LGTV2)
        )
        mock_browser_class.assert_called_once_with(
            mock_zc, ["_lgsmarttv._tcp.local.", LGTV2], listener
        )
        assert browser is mock_browser_class.return_value
