#!/usr/bin/env python3
"""
SSAP session

Pairing, request/response correlation and push folding on top of a
connected WebSocketTransport. One receive loop task reads every inbound
message; callers awaiting a response park on a OneShot slot in the pending
table until the loop, a timeout or teardown completes it.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from .inputchannel import InputChannel
from .transport import RemoteInputTransport, WebSocketTransport
from .types import (
    REGISTER_TIMEOUT,
    REQUEST_TIMEOUT,
    AuthFailedError,
    InvalidResponseError,
    NotConnectedError,
    OneShot,
    RequestTimeoutError,
    RuntimeState,
    TransportError,
    TVControlError,
    json_bool,
    json_int,
    json_object,
    json_str,
)

logger = logging.getLogger(__name__)

URI_TURN_OFF = "ssap://system/turnOff"
URI_VOLUME_UP = "ssap://audio/volumeUp"
URI_VOLUME_DOWN = "ssap://audio/volumeDown"
URI_GET_VOLUME = "ssap://audio/getVolume"
URI_SET_MUTE = "ssap://audio/setMute"
URI_CHANNEL_UP = "ssap://tv/channelUp"
URI_CHANNEL_DOWN = "ssap://tv/channelDown"
URI_SWITCH_INPUT = "ssap://tv/switchInput"
URI_SEND_BUTTON = "ssap://com.webos.service.networkinput/sendButton"
URI_POINTER_SOCKET = "ssap://com.webos.service.networkinput/getPointerInputSocket"
URI_LAUNCH = "ssap://system.launcher/launch"
URI_FOREGROUND_APP = "ssap://com.webos.applicationManager/getForegroundAppInfo"
URI_POWER_STATE = "ssap://com.webos.service.tvpower/power/getPowerState"

CLIENT_MANIFEST: dict[str, Any] = {
    "manifestVersion": 1,
    "appVersion": "1.0",
    "signed": {
        "created": "2024-01-01",
        "appId": "com.github.tvcontrol",
        "vendorId": "com.github",
    },
    "permissions": [
        "LAUNCH",
        "LAUNCH_WEBAPP",
        "CONTROL_AUDIO",
        "CONTROL_INPUT_TEXT",
        "CONTROL_INPUT_JOYSTICK",
        "CONTROL_MOUSE_AND_KEYBOARD",
        "CONTROL_POWER",
        "READ_RUNNING_APPS",
        "READ_CURRENT_CHANNEL",
        "READ_TV_CHANNEL_LIST",
        "READ_INPUT_DEVICE_LIST",
        "READ_POWER_STATE",
    ],
}


class SessionState(enum.Enum):
    """SSAP session lifecycle"""

    IDLE = "idle"
    REGISTERING = "registering"
    READY = "ready"
    CLOSED = "closed"


@dataclass
class PendingRequest:
    """An outstanding request awaiting its response"""

    request_id: str
    slot: OneShot
    timer: asyncio.TimerHandle | None = field(default=None)


def _volume_fields(payload: dict[str, Any]) -> tuple[int | None, bool | None]:
    """volume/mute, either top level or nested under volumeStatus"""
    volume = json_int(payload.get("volume"))
    muted = json_bool(payload.get("mute"))
    if status := json_object(payload.get("volumeStatus")):
        if volume is None:
            volume = json_int(status.get("volume"))
        if muted is None:
            muted = json_bool(status.get("muteStatus"))
    return volume, muted


class SSAPSession:  # pylint: disable=too-many-instance-attributes, too-many-public-methods
    """Pairing and command session over one command channel"""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        transport: WebSocketTransport,
        request_timeout: float = REQUEST_TIMEOUT,
        register_timeout: float = REGISTER_TIMEOUT,
        on_runtime_state: Callable[[RuntimeState], None] | None = None,
        on_closed: Callable[["SSAPSession", Exception], None] | None = None,
        input_transport_factory: Callable[[str], RemoteInputTransport] = RemoteInputTransport.from_url,
    ):
        self.transport: WebSocketTransport | None = transport
        self.request_timeout = request_timeout
        self.register_timeout = register_timeout
        self.on_runtime_state = on_runtime_state
        self.on_closed = on_closed
        self.input_transport_factory = input_transport_factory
        self.state = SessionState.IDLE
        self.runtime_state = RuntimeState()
        self._lock = threading.Lock()
        self._pending: dict[str, PendingRequest] = {}
        self._counter = 0
        self._registration_id: str | None = None
        self._receive_task: asyncio.Task | None = None

    @property
    def is_ready(self) -> bool:
        """paired and able to take commands"""
        return self.state is SessionState.READY

    @property
    def pending_count(self) -> int:
        """number of requests still waiting on a response"""
        with self._lock:
            return len(self._pending)

    def start(self) -> None:
        """Launch the receive loop"""
        if self._receive_task is None and self.state is not SessionState.CLOSED:
            self._receive_task = asyncio.create_task(self._receive_loop())

    def _next_request_id(self) -> str:
        with self._lock:
            self._counter += 1
            return f"req-{self._counter}"

    def _notify(self, callback: Callable | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception("Observer %s failed", callback)

    async def _send_and_wait(  # pylint: disable=too-many-arguments
        self,
        msgtype: str,
        uri: str | None,
        payload: dict[str, Any] | None,
        timeout: float,
        registration: bool = False,
    ) -> dict[str, Any]:
        transport = self.transport
        if transport is None or self.state is SessionState.CLOSED:
            raise NotConnectedError()

        request_id = self._next_request_id()
        message: dict[str, Any] = {"type": msgtype, "id": request_id}
        if uri is not None:
            message["uri"] = uri
        if payload is not None:
            message["payload"] = payload

        entry = PendingRequest(request_id=request_id, slot=OneShot())
        with self._lock:
            self._pending[request_id] = entry
            if registration:
                self._registration_id = request_id

        logger.debug("-> type=%s uri=%s id=%s", msgtype, uri, request_id)
        try:
            try:
                await transport.send(json.dumps(message))
            except TVControlError as err:
                self._resolve_pending(request_id, error=err)
            else:
                loop = asyncio.get_running_loop()
                with self._lock:
                    if request_id in self._pending:
                        entry.timer = loop.call_later(
                            timeout, self._on_timeout, request_id, timeout
                        )
            return await entry.slot
        finally:
            with self._lock:
                if self._pending.get(request_id) is entry:
                    del self._pending[request_id]
                if registration and self._registration_id == request_id:
                    self._registration_id = None
            if entry.timer:
                entry.timer.cancel()

    def _resolve_pending(
        self,
        request_id: str,
        response: dict[str, Any] | None = None,
        error: BaseException | None = None,
    ) -> bool:
        """Complete a pending request. Only the first caller for an id wins."""
        with self._lock:
            entry = self._pending.pop(request_id, None)
        if entry is None:
            return False
        if entry.timer:
            entry.timer.cancel()
        if error is not None:
            return entry.slot.fail(error)
        return entry.slot.resolve(response)

    def _on_timeout(self, request_id: str, timeout: float) -> None:
        if self._resolve_pending(request_id, error=RequestTimeoutError()):
            logger.warning("Request %s timed out after %ss", request_id, timeout)

    def _fail_all_pending(self, error: BaseException) -> int:
        with self._lock:
            entries = list(self._pending.values())
            self._pending.clear()
            self._registration_id = None
        for entry in entries:
            if entry.timer:
                entry.timer.cancel()
            entry.slot.fail(error)
        return len(entries)

    async def register(self, client_key: str | None = None) -> str | None:
        """
        Pair with the TV

        With a stored client key the TV answers immediately. Without one it
        shows an approval prompt first, so the wait is much longer than for
        an ordinary request. Returns the key from the registered message.
        """
        payload: dict[str, Any] = {"pairingType": "PROMPT", "manifest": CLIENT_MANIFEST}
        if client_key:
            payload["client-key"] = client_key

        self.state = SessionState.REGISTERING
        logger.info("Sending registration (has key: %s)", bool(client_key))
        try:
            response = await self._send_and_wait(
                "register", None, payload, self.register_timeout, registration=True
            )
        except BaseException:
            if self.state is SessionState.REGISTERING:
                self.state = SessionState.IDLE
            raise

        msgtype = response.get("type")
        if msgtype != "registered":
            if self.state is SessionState.REGISTERING:
                self.state = SessionState.IDLE
            raise AuthFailedError(
                json_str(response.get("error"))
                or f"Unexpected registration response type: {msgtype}"
            )

        key = json_str((json_object(response.get("payload")) or {}).get("client-key"))
        self.state = SessionState.READY
        logger.info("Registered, client key received: %s", key is not None)
        return key

    async def send_command(self, uri: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send a request and return the full response envelope"""
        response = await self._send_and_wait("request", uri, payload, self.request_timeout)
        if response.get("type") == "error":
            logger.warning("%s returned error: %s", uri, response.get("error"))
        return response

    async def _receive_loop(self) -> None:
        transport = self.transport
        try:
            while transport is not None:
                text = await transport.receive()
                self._handle_message(text)
        except asyncio.CancelledError:
            raise
        except Exception as err:  # pylint: disable=broad-exception-caught
            logger.error("Receive loop failed: %s", err)
            await self._fail_channel(err)

    def _handle_message(self, text: str) -> None:
        try:
            envelope = json.loads(text)
        except ValueError as err:
            raise InvalidResponseError("malformed JSON") from err
        if not isinstance(envelope, dict) or not isinstance(envelope.get("type"), str):
            raise InvalidResponseError("message has no type")

        msgtype = envelope["type"]
        payload = json_object(envelope.get("payload"))
        request_id = json_str(envelope.get("id"))
        if request_id is None:
            self._apply_runtime_state(payload)
            return

        with self._lock:
            is_prompt = request_id == self._registration_id and msgtype == "response"
        if is_prompt:
            logger.info(
                "TV is showing the pairing prompt (id %s, pairingType %s)",
                request_id,
                (payload or {}).get("pairingType"),
            )
            return

        logger.debug("<- type=%s id=%s", msgtype, request_id)
        if not self._resolve_pending(request_id, response=envelope):
            logger.debug("No pending request for id %s", request_id)
        self._apply_runtime_state(payload)

    def _apply_runtime_state(self, payload: dict[str, Any] | None) -> bool:
        if not payload:
            return False
        volume, muted = _volume_fields(payload)
        changed = self.runtime_state.merge(
            volume=volume,
            is_muted=muted,
            foreground_app_id=json_str(payload.get("appId")),
        )
        if changed:
            self._notify(self.on_runtime_state, self.runtime_state.copy())
        return changed

    async def _fail_channel(self, error: Exception) -> None:
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        if not isinstance(error, TVControlError):
            error = TransportError(str(error) or error.__class__.__name__)
        failed = self._fail_all_pending(error)
        logger.info("Channel lost, failed %d pending request(s)", failed)
        transport, self.transport = self.transport, None
        if transport:
            await transport.disconnect()
        self._notify(self.on_closed, self, error)

    async def close(self) -> None:
        """Stop the receive loop, fail pending requests and drop the transport"""
        self.state = SessionState.CLOSED
        task, self._receive_task = self._receive_task, None
        if task and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._fail_all_pending(NotConnectedError())
        transport, self.transport = self.transport, None
        if transport:
            await transport.disconnect()

    async def power_off(self) -> dict[str, Any]:
        """turn the TV off"""
        return await self.send_command(URI_TURN_OFF)

    async def volume_up(self) -> dict[str, Any]:
        """volume +1"""
        return await self.send_command(URI_VOLUME_UP)

    async def volume_down(self) -> dict[str, Any]:
        """volume -1"""
        return await self.send_command(URI_VOLUME_DOWN)

    async def toggle_mute(self) -> dict[str, Any]:
        """read the mute flag then set the opposite; not atomic"""
        response = await self.send_command(URI_GET_VOLUME)
        _, muted = _volume_fields(json_object(response.get("payload")) or {})
        return await self.send_command(URI_SET_MUTE, {"mute": not bool(muted)})

    async def channel_up(self) -> dict[str, Any]:
        """next channel"""
        return await self.send_command(URI_CHANNEL_UP)

    async def channel_down(self) -> dict[str, Any]:
        """previous channel"""
        return await self.send_command(URI_CHANNEL_DOWN)

    async def send_button(self, name: str) -> dict[str, Any]:
        """press a named remote button"""
        return await self.send_command(URI_SEND_BUTTON, {"name": name})

    async def launch_app(self, app_id: str) -> dict[str, Any]:
        """launch an app by id"""
        return await self.send_command(URI_LAUNCH, {"id": app_id})

    async def switch_input(self, input_id: str) -> dict[str, Any]:
        """switch to an external input such as HDMI_1"""
        response = await self.send_command(URI_SWITCH_INPUT, {"inputId": input_id})
        if response.get("type") != "error" and self.runtime_state.merge(current_input=input_id):
            self._notify(self.on_runtime_state, self.runtime_state.copy())
        return response

    async def open_input_channel(self) -> InputChannel:
        """ask the TV for its pointer socket and connect to it"""
        response = await self.send_command(URI_POINTER_SOCKET)
        socket_path = json_str((json_object(response.get("payload")) or {}).get("socketPath"))
        if not socket_path:
            raise InvalidResponseError("pointer input socket path missing")
        transport = self.input_transport_factory(socket_path)
        await transport.connect()
        return InputChannel(transport)

    async def query_runtime_state(self) -> RuntimeState:
        """
        Refresh volume/mute, foreground app and power state

        The three queries run independently; one that fails leaves its
        fields at their previous values.
        """
        if self.transport is None or self.state is SessionState.CLOSED:
            raise NotConnectedError()

        results = await asyncio.gather(
            self.send_command(URI_GET_VOLUME),
            self.send_command(URI_FOREGROUND_APP),
            self.send_command(URI_POWER_STATE),
            return_exceptions=True,
        )
        volume_resp, app_resp, power_resp = [
            None if isinstance(result, BaseException) else json_object(result.get("payload"))
            for result in results
        ]
        for result in results:
            if isinstance(result, BaseException):
                logger.debug("Runtime state sub-query failed: %s", result)

        fields: dict[str, Any] = {}
        if volume_resp:
            fields["volume"], fields["is_muted"] = _volume_fields(volume_resp)
        if app_resp:
            fields["foreground_app_id"] = json_str(app_resp.get("appId"))
        if power_resp:
            state = power_resp.get("state")
            if isinstance(state, dict):
                state = state.get("power")
            fields["power_state"] = json_str(state)

        self.runtime_state.merge(**fields)
        snapshot = self.runtime_state.copy()
        self._notify(self.on_runtime_state, snapshot)
        return snapshot
