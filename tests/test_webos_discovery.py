#!/usr/bin/env python3
"""test the discovery aggregator"""
# pylint: disable=protected-access,redefined-outer-name

import asyncio
import threading
from unittest.mock import MagicMock, patch

import pytest
import pytest_asyncio
from aioresponses import aioresponses

from tvcontrol.mdns_discovery import DiscoveredService
from tvcontrol.webos import discovery
from tvcontrol.webos.types import Device, DiscoverySettings

LOCATION = "http://192.168.1.50:1749/"
REPLY = (
    b"HTTP/1.1 200 OK\r\n"
    b"LOCATION: http://192.168.1.50:1749/\r\n"
    b"SERVER: WebOS/4.1.0 UPnP/1.0 webOS TV/Version 0.9\r\n"
    b"USN: uuid:abcd\r\n\r\n"
)
DESCRIPTION = "<root><device><friendlyName>[LG] webOS TV OLED55</friendlyName></device></root>"


def service(instance, host, port=3000):
    """resolved mDNS service"""
    return DiscoveredService(
        name=f"{instance}._lgtv2._tcp.local.",
        instance_name=instance,
        host=host,
        port=port,
        addresses=[host],
        properties={},
    )


@pytest_asyncio.fixture
async def aggregator():
    """aggregator with no network and recorded callbacks"""
    agg = discovery.DiscoveryAggregator(
        settings=DiscoverySettings(ssdp_window=0.05, fetch_timeout=1),
        interface_lookup=lambda: None,
        zeroconf_factory=MagicMock,
    )
    agg.updates = []
    agg.statuses = []
    agg.on_devices_updated = agg.updates.append
    agg.on_status_changed = agg.statuses.append
    yield agg
    await agg.stop()


async def settle(agg):
    """let enrichment tasks finish"""
    for _ in range(50):
        if not agg._fetch_tasks:
            return
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_upsert_is_idempotent(aggregator):
    """same id twice is one entry"""
    device = Device(id="a", name="Kitchen", host="10.0.0.2")
    aggregator.upsert(device)
    aggregator.upsert(device)
    assert aggregator.devices == [device]
    assert aggregator.statuses == ["Found 1 TV(s)", "Found 1 TV(s)"]


@pytest.mark.asyncio
async def test_upsert_replaces_and_sorts(aggregator):
    """replacement by id, list sorted by name"""
    aggregator.upsert(Device(id="b", name="Zebra", host="10.0.0.3"))
    aggregator.upsert(Device(id="a", name="Kitchen", host="10.0.0.2"))
    aggregator.upsert(Device(id="b", name="Attic", host="10.0.0.3"))
    assert [device.name for device in aggregator.devices] == ["Attic", "Kitchen"]
    assert [device.name for device in aggregator.updates[-1]] == ["Attic", "Kitchen"]
    assert aggregator.statuses[-1] == "Found 2 TV(s)"


@pytest.mark.asyncio
async def test_mdns_resolved_and_removed(aggregator):
    """resolved services are added and removal drops them"""
    aggregator.handle_service_resolved(service("Living Room", "192.168.1.50"))
    aggregator.handle_service_resolved(service("Bedroom", "192.168.1.51", 3001))
    devices = aggregator.devices
    assert [device.id for device in devices] == ["Bedroom-192.168.1.51", "Living Room-192.168.1.50"]
    assert devices[0].port == 3001

    statuses = len(aggregator.statuses)
    aggregator.remove_service("Living Room")
    assert [device.name for device in aggregator.devices] == ["Bedroom"]
    assert len(aggregator.statuses) == statuses


@pytest.mark.asyncio
async def test_mdns_callbacks_marshalled_to_loop(aggregator):
    """zeroconf thread callbacks land on the event loop"""
    aggregator._loop = asyncio.get_running_loop()
    aggregator._stopping = False
    aggregator._mdns_resolved(service("TV", "10.0.0.4"))
    assert aggregator.devices == []
    await asyncio.sleep(0)
    assert aggregator.devices[0].host == "10.0.0.4"


@pytest.mark.asyncio
async def test_ssdp_enrichment(aggregator):
    """placeholder name replaced by the friendlyName, other fields kept"""
    with aioresponses() as mocked:
        mocked.get(LOCATION, status=200, body=DESCRIPTION)
        aggregator.handle_ssdp_datagram(REPLY)
        assert aggregator.devices[0].name == "LG webOS TV"
        await settle(aggregator)

    device = aggregator.devices[0]
    assert device.name == "[LG] webOS TV OLED55"
    assert device.id == "ssdp-uuid:abcd-192.168.1.50"
    assert device.host == "192.168.1.50"
    assert device.port == 1749
    assert aggregator.statuses[-1] == "Found 1 TV(s)"


@pytest.mark.asyncio
async def test_ssdp_reannounce_keeps_name(aggregator):
    """an enriched device is not renamed or fetched again"""
    with aioresponses() as mocked:
        mocked.get(LOCATION, status=200, body=DESCRIPTION)
        aggregator.handle_ssdp_datagram(REPLY)
        await settle(aggregator)
        aggregator.handle_ssdp_datagram(REPLY)
        assert not aggregator._fetch_tasks
    assert aggregator.devices[0].name == "[LG] webOS TV OLED55"


@pytest.mark.asyncio
async def test_ssdp_duplicate_while_fetching(aggregator):
    """a second reply during the fetch does not start another"""
    with aioresponses() as mocked:
        mocked.get(LOCATION, status=200, body=DESCRIPTION)
        aggregator.handle_ssdp_datagram(REPLY)
        aggregator.handle_ssdp_datagram(REPLY)
        assert len(aggregator._fetch_tasks) == 1
        await settle(aggregator)


@pytest.mark.asyncio
async def test_ssdp_fetch_failure_keeps_placeholder(aggregator):
    """a failed description fetch leaves the placeholder"""
    with aioresponses() as mocked:
        mocked.get(LOCATION, status=404)
        aggregator.handle_ssdp_datagram(REPLY)
        await settle(aggregator)
    assert aggregator.devices[0].name == "LG webOS TV"
    assert not aggregator._fetching


@pytest.mark.asyncio
async def test_ssdp_non_lg_ignored(aggregator):
    """non TV replies do not touch the list"""
    aggregator.handle_ssdp_datagram(b"HTTP/1.1 200 OK\r\nLOCATION: http://1.2.3.4/\r\n\r\n")
    assert aggregator.devices == []
    assert aggregator.updates == []


@pytest.mark.asyncio
async def test_start_without_interface(aggregator):
    """no interface skips SSDP with a hint"""
    with patch("tvcontrol.mdns_discovery.browse") as mock_browse:
        await aggregator.start()
        await aggregator.wait()
        mock_browse.assert_called_once()
    assert aggregator.statuses == [discovery.STATUS_BROWSING, discovery.STATUS_NO_INTERFACE]


@pytest.mark.asyncio
async def test_start_clears_and_stop_closes(aggregator):
    """start clears the list; stop cancels the browser and closes zeroconf"""
    aggregator.upsert(Device(id="old", name="Old", host="10.0.0.9"))
    with patch("tvcontrol.mdns_discovery.browse") as mock_browse:
        await aggregator.start()
        assert aggregator.devices == []
        zeroconf = aggregator._zeroconf
        await aggregator.stop()
    mock_browse.return_value.cancel.assert_called_once()
    zeroconf.close.assert_called_once()
    assert aggregator._zeroconf is None


@pytest.mark.asyncio
async def test_mdns_failure_reported(aggregator):
    """zeroconf failing to start is reported but SSDP still runs"""
    aggregator.zeroconf_factory = MagicMock(side_effect=OSError("no multicast"))
    await aggregator.start()
    await aggregator.wait()
    assert discovery.STATUS_MDNS_FAILED in aggregator.statuses


@pytest.mark.asyncio
async def test_ssdp_sweep_reports_nothing_found(aggregator):
    """an empty sweep suggests manual entry"""
    aggregator.interface_lookup = lambda: "127.0.0.1"
    with patch("tvcontrol.mdns_discovery.browse"):
        await aggregator.start()
        await aggregator.wait()
    assert aggregator.statuses[-1] == discovery.STATUS_NO_SSDP


@pytest.mark.asyncio
async def test_interface_lookup_off_the_loop(aggregator):
    """the interface lookup runs in a worker thread"""
    seen = []

    def lookup():
        seen.append(threading.current_thread())
        return None

    aggregator.interface_lookup = lookup
    with patch("tvcontrol.mdns_discovery.browse"):
        await aggregator.start()
        await aggregator.wait()
    assert seen and seen[0] is not threading.main_thread()
    assert aggregator.statuses[-1] == discovery.STATUS_NO_INTERFACE


@pytest.mark.asyncio
async def test_ssdp_socket_failure_reported(aggregator):
    """a socket that cannot be opened is reported, not just logged"""
    aggregator.interface_lookup = lambda: "192.0.2.1"
    with patch("tvcontrol.mdns_discovery.browse"), patch(
        "tvcontrol.webos.ssdp.open_search_socket",
        side_effect=OSError("Cannot assign requested address"),
    ):
        await aggregator.start()
        await aggregator.wait()
    assert aggregator.statuses == [discovery.STATUS_BROWSING, discovery.STATUS_SSDP_FAILED]


@pytest.mark.asyncio
async def test_callbacks_ignored_after_stop(aggregator):
    """late zeroconf callbacks after stop are dropped"""
    aggregator._loop = asyncio.get_running_loop()
    await aggregator.stop()
    aggregator._mdns_resolved(service("Late", "10.0.0.5"))
    await asyncio.sleep(0)
    assert aggregator.devices == []


def test_protocol_swallows_bad_datagrams():
    """handler errors do not kill the endpoint"""
    agg = MagicMock()
    agg.handle_ssdp_datagram.side_effect = ValueError("bad")
    protocol = discovery.SSDPResponseProtocol(agg)
    protocol.datagram_received(b"junk", ("1.2.3.4", 1900))
    agg.handle_ssdp_datagram.assert_called_once_with(b"junk")
