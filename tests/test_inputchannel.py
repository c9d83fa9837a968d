#!/usr/bin/env python3
"""test the pointer input channel"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from tvcontrol.webos.inputchannel import InputChannel


def make_channel():
    """channel over a mocked transport"""
    transport = MagicMock()
    transport.send = AsyncMock()
    transport.disconnect = AsyncMock()
    return InputChannel(transport), transport


def test_format_message():
    """type line, field lines and a blank line"""
    assert InputChannel.format_message("button", name="HOME") == "type:button\nname:HOME\n\n"
    assert InputChannel.format_message("click") == "type:click\n\n"


@pytest.mark.asyncio
async def test_button_uppercased():
    """button names are sent upper case"""
    channel, transport = make_channel()
    await channel.button("enter")
    transport.send.assert_awaited_once_with("type:button\nname:ENTER\n\n")


@pytest.mark.asyncio
async def test_pointer_messages():
    """move, scroll and click"""
    channel, transport = make_channel()
    await channel.move(5, -3)
    await channel.move(1, 1, down=True)
    await channel.scroll(0, 2)
    await channel.click()
    sent = [call.args[0] for call in transport.send.await_args_list]
    assert sent == [
        "type:move\ndx:5\ndy:-3\ndown:0\n\n",
        "type:move\ndx:1\ndy:1\ndown:1\n\n",
        "type:scroll\ndx:0\ndy:2\n\n",
        "type:click\n\n",
    ]


@pytest.mark.asyncio
async def test_close():
    """close drops the socket"""
    channel, transport = make_channel()
    await channel.close()
    transport.disconnect.assert_awaited_once()
