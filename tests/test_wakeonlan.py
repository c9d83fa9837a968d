#!/usr/bin/env python3
"""test Wake-on-LAN"""

from unittest.mock import patch

import pytest

import tvcontrol.wakeonlan
from tvcontrol.webos.types import TransportError


@pytest.mark.asyncio
async def test_send_broadcasts():
    """packet goes to the broadcast address on port 9"""
    with patch("tvcontrol.wakeonlan.wakeonlan.send_magic_packet") as mock_send:
        await tvcontrol.wakeonlan.WakeOnLAN().send(" 00:11:22:33:44:55 ")
    mock_send.assert_called_once_with(
        "00:11:22:33:44:55", ip_address="255.255.255.255", port=9
    )


@pytest.mark.asyncio
async def test_send_custom_target():
    """address and port are configurable"""
    with patch("tvcontrol.wakeonlan.wakeonlan.send_magic_packet") as mock_send:
        await tvcontrol.wakeonlan.WakeOnLAN(address="192.168.1.255", port=7).send(
            "AA-BB-CC-DD-EE-FF"
        )
    mock_send.assert_called_once_with("AA-BB-CC-DD-EE-FF", ip_address="192.168.1.255", port=7)


@pytest.mark.asyncio
@pytest.mark.parametrize("mac", ["", "aa:bb:cc:dd:ee", "aa:bb:cc:dd:ee:gg", "aaa:bb:cc:dd:ee:ff"])
async def test_send_invalid_mac(mac):
    """malformed addresses are rejected before anything is sent"""
    with patch("wakeonlan.socket.socket") as mock_socket:
        with pytest.raises(TransportError) as excinfo:
            await tvcontrol.wakeonlan.WakeOnLAN().send(mac)
    assert excinfo.value.detail == "Invalid MAC address format."
    mock_socket.return_value.sendto.assert_not_called()


@pytest.mark.asyncio
async def test_send_socket_error():
    """socket failures surface as TransportError"""
    with patch(
        "tvcontrol.wakeonlan.wakeonlan.send_magic_packet",
        side_effect=OSError("Network is unreachable"),
    ):
        with pytest.raises(TransportError) as excinfo:
            await tvcontrol.wakeonlan.WakeOnLAN().send("00:11:22:33:44:55")
    assert "unreachable" in str(excinfo.value)
