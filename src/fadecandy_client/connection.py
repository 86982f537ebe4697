"""Request/response session with fcserver.

Every request is stamped with a sequence number and parked in a pending
table until fcserver echoes that number back or its timer fires. Several
requests may be in flight at once; replies are matched purely by
sequence, so they can arrive in any order.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import time
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from .config import DEFAULT_TIMEOUT
from .devices import LEDS_PER_DEVICE, Device, DeviceRef, parse_device_list, serial_of
from .errors import (
    DeviceCommandError,
    FadecandyError,
    ProtocolError,
    RequestTimeoutError,
    ServerConnectionError,
)
from .logging import get_logger
from .metrics import (
    observe_request,
    record_protocol_error,
    record_request_sent,
    set_pending_requests,
)
from .transport import Frame, Transport, WebSocketTransport

PixelData = Union[bytes, bytearray, memoryview, Sequence[int]]
ProtocolErrorHandler = Callable[[ProtocolError], None]
TransportFactory = Callable[[str, Optional[float]], Awaitable[Transport]]


@dataclass
class PendingRequest:
    """A request awaiting its reply."""

    sequence: int
    request_type: str
    device: Optional[Mapping[str, Any]]
    message: str
    timeout: float
    future: "asyncio.Future[Dict[str, Any]]"
    timer: asyncio.TimerHandle
    started: float


def _coerce_pixels(rgb: PixelData) -> List[int]:
    if isinstance(rgb, (int, str)):
        raise TypeError(f"pixel data must be a byte sequence, not {type(rgb).__name__}")
    return list(bytes(rgb))


class Connection:
    """A single fcserver session multiplexing concurrent requests."""

    def __init__(
        self,
        transport: Transport,
        timeout: float = DEFAULT_TIMEOUT,
        on_protocol_error: Optional[ProtocolErrorHandler] = None,
    ) -> None:
        self.timeout = timeout
        self.logger = get_logger("fadecandy.connection")
        self._transport = transport
        self._on_protocol_error = on_protocol_error
        self._sequence = 1
        self._pending: Dict[int, PendingRequest] = {}
        self._devices: Tuple[Device, ...] = ()
        self._reader: Optional[asyncio.Task[None]] = None
        self._open = False
        self._ready = False

    @classmethod
    async def open(
        cls,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        on_protocol_error: Optional[ProtocolErrorHandler] = None,
        transport_factory: TransportFactory = WebSocketTransport.connect,
    ) -> "Connection":
        """Connect to fcserver and enumerate its devices.

        The returned connection is ready for use. On any failure the
        transport is closed and the error is raised.
        """

        transport = await transport_factory(url, timeout)
        connection = cls(transport, timeout=timeout, on_protocol_error=on_protocol_error)
        try:
            await connection.start()
        except BaseException:
            await connection.close()
            raise
        return connection

    async def __aenter__(self) -> "Connection":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def is_ready(self) -> bool:
        return self._open and self._ready

    @property
    def devices(self) -> Tuple[Device, ...]:
        return self._devices

    @property
    def pending_sequences(self) -> Tuple[int, ...]:
        return tuple(self._pending)

    @property
    def next_sequence(self) -> int:
        return self._sequence

    def device(self, serial: str) -> Device:
        for device in self._devices:
            if device.serial == serial:
                return device
        raise KeyError(f"Unknown Fadecandy device: {serial}")

    async def start(self) -> None:
        """Start reading replies and fetch the device list."""

        if self._reader is None:
            self._open = True
            self._reader = asyncio.create_task(self._read_loop())
        reply = await self.request({"type": "list_connected_devices"})
        self._devices = tuple(parse_device_list(reply))
        for device in self._devices:
            self.logger.info(
                "Found Fadecandy device",
                extra={"serial": device.serial, "version": device.version},
            )
        self._ready = True

    async def close(self) -> None:
        """Stop the reader, fail outstanding requests and close the transport."""

        if not self._open and self._reader is None:
            return
        self._open = False
        self._ready = False
        reader, self._reader = self._reader, None
        if reader is not None:
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        self._fail_pending(ServerConnectionError("Connection closed"))
        try:
            await self._transport.close()
        except Exception:
            self.logger.exception("Error closing transport")

    async def request(
        self, body: Mapping[str, Any], timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """Send `body` and wait for the matching reply."""

        if not self._open:
            raise ServerConnectionError("Connection is not open")

        message = dict(body)
        sequence = self._sequence
        self._sequence += 1
        message["sequence"] = sequence
        text = json.dumps(message)
        request_type = str(message.get("type"))
        delay = self.timeout if timeout is None else timeout

        loop = asyncio.get_running_loop()
        future: asyncio.Future[Dict[str, Any]] = loop.create_future()
        device = message.get("device")
        self._pending[sequence] = PendingRequest(
            sequence=sequence,
            request_type=request_type,
            device=device if isinstance(device, Mapping) else None,
            message=text,
            timeout=delay,
            future=future,
            timer=loop.call_later(delay, self._expire, sequence),
            started=time.perf_counter(),
        )
        set_pending_requests(len(self._pending))
        record_request_sent(request_type)
        self.logger.debug(
            "Sending request",
            extra={"sequence": sequence, "type": request_type},
        )

        try:
            try:
                await self._transport.send(text)
            except Exception as exc:
                pending = self._settle(sequence)
                if pending is not None:
                    self._observe(pending, "disconnected")
                if isinstance(exc, ServerConnectionError):
                    raise
                raise ServerConnectionError(f"Failed to send request {sequence}: {exc}") from exc
            return await future
        finally:
            # Only a cancelled caller still has an entry here.
            self._settle(sequence)

    async def push_raw_pixels(self, device: Device, rgb: PixelData) -> Dict[str, Any]:
        """Send RGB bytes straight to one device.

        Disables interpolation, dithering and color correction first, so
        the bytes reach the LEDs unmodified. Bypasses fcserver's mapping.
        """

        pixels = _coerce_pixels(rgb)
        target = device.as_wire()
        await self.request(
            {
                "type": "device_options",
                "device": target,
                "options": {"led": None, "dither": False, "interpolate": False},
            }
        )
        await self.request(
            {
                "type": "device_color_correction",
                "device": target,
                "color": {"gamma": 1.0, "whitepoint": [1.0, 1.0, 1.0]},
            }
        )
        return await self.request({"type": "device_pixels", "device": target, "pixels": pixels})

    async def all_lights_off(self) -> List[Dict[str, Any]]:
        """Turn every LED on every device off."""

        return await self._fan_out(lambda _device: bytearray(LEDS_PER_DEVICE * 3))

    async def identify_light(self, device: DeviceRef, index: int) -> List[Dict[str, Any]]:
        """Light one LED at full white and turn every other LED off."""

        if not 0 <= index < LEDS_PER_DEVICE:
            raise ValueError(f"index must be between 0 and {LEDS_PER_DEVICE - 1}; got {index}.")
        serial = serial_of(device)
        self.device(serial)

        def _buffer(this_device: Device) -> bytearray:
            buffer = bytearray(LEDS_PER_DEVICE * 3)
            if this_device.serial == serial:
                buffer[3 * index : 3 * index + 3] = b"\xff\xff\xff"
            return buffer

        return await self._fan_out(_buffer)

    async def _fan_out(self, buffer_for: Callable[[Device], PixelData]) -> List[Dict[str, Any]]:
        # Fail-fast: the first error is raised while the remaining chains keep running.
        return await asyncio.gather(
            *(self.push_raw_pixels(device, buffer_for(device)) for device in self._devices)
        )

    async def _read_loop(self) -> None:
        error: FadecandyError = ServerConnectionError("fcserver closed the connection")
        try:
            async for frame in self._transport.frames():
                self._dispatch(frame)
        except asyncio.CancelledError:
            error = ServerConnectionError("Connection closed")
            raise
        except Exception as exc:
            self.logger.error(
                "Transport failure",
                exc_info=(type(exc), exc, exc.__traceback__),
            )
            error = ServerConnectionError(f"Transport failure: {exc}")
        finally:
            self._open = False
            self._ready = False
            self._fail_pending(error)
        self.logger.warning("Connection to fcserver lost", extra={"error": str(error)})

    def _dispatch(self, frame: Frame) -> None:
        try:
            payload = json.loads(frame)
        except (TypeError, ValueError):
            self._report_protocol_error(ProtocolError("Unparsable frame", frame), "non_json")
            return
        if not isinstance(payload, Mapping):
            self._report_protocol_error(ProtocolError("Reply is not a JSON object", frame), "non_object")
            return
        sequence = payload.get("sequence")
        if not isinstance(sequence, int) or isinstance(sequence, bool):
            self._report_protocol_error(ProtocolError("Reply has no sequence number", frame), "no_sequence")
            return

        pending = self._settle(sequence)
        if pending is None:
            self.logger.debug("Ignoring reply for unknown or settled request", extra={"sequence": sequence})
            return
        if pending.future.done():
            return
        if payload.get("error"):
            self._observe(pending, "error")
            pending.future.set_exception(
                DeviceCommandError(pending.request_type, payload, pending.device)
            )
            return
        self._observe(pending, "ok")
        pending.future.set_result(dict(payload))

    def _expire(self, sequence: int) -> None:
        pending = self._settle(sequence)
        if pending is None or pending.future.done():
            return
        self.logger.warning(
            "Request timed out",
            extra={"sequence": sequence, "type": pending.request_type, "timeout": pending.timeout},
        )
        self._observe(pending, "timeout")
        pending.future.set_exception(RequestTimeoutError(sequence, pending.message, pending.timeout))

    def _settle(self, sequence: int) -> Optional[PendingRequest]:
        pending = self._pending.pop(sequence, None)
        if pending is not None:
            pending.timer.cancel()
            set_pending_requests(len(self._pending))
        return pending

    def _fail_pending(self, error: FadecandyError) -> None:
        for sequence in list(self._pending):
            pending = self._settle(sequence)
            if pending is None or pending.future.done():
                continue
            self._observe(pending, "disconnected")
            pending.future.set_exception(error)

    def _observe(self, pending: PendingRequest, result: str) -> None:
        observe_request(pending.request_type, result, time.perf_counter() - pending.started)

    def _report_protocol_error(self, error: ProtocolError, reason: str) -> None:
        record_protocol_error(reason)
        self.logger.warning(
            "Dropping malformed frame",
            extra={"reason": error.reason, "frame": error.frame},
        )
        if self._on_protocol_error is not None:
            try:
                self._on_protocol_error(error)
            except Exception:
                self.logger.exception("Protocol error handler failed")
