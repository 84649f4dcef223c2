"""
WebSocket transport (websockets asyncio client).

Core model:
- One ClientConnection per attempt; the connection layer owns retries.
- The handshake has no library-level timeout: the connect timeout is a
  reducer-owned timer that aborts the attempt.
- Keepalive pings stay enabled so a silently dead relay surfaces as an
  abnormal close (1006/1011) and enters the reconnect policy.
"""

from __future__ import annotations

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed

from observability.logger import log_event
from protocol.errors import TransportError
from spec import (
    ABNORMAL_CLOSURE_CODE,
    CLOSE_HANDSHAKE_TIMEOUT_S,
    MAX_MESSAGE_BYTES,
    NORMAL_CLOSURE_CODE,
)
from transport.base import Transport, TransportClosedError


def _closed_error(exc: ConnectionClosed) -> TransportClosedError:
    # rcvd is None when the connection dropped without a close frame
    if exc.rcvd is not None:
        return TransportClosedError(exc.rcvd.code, exc.rcvd.reason or None)
    return TransportClosedError(ABNORMAL_CLOSURE_CODE, str(exc) or None)


class WebSocketTransport(Transport):
    """Single-attempt WebSocket connection to the relay."""

    def __init__(
        self,
        address: str,
        *,
        max_message_bytes: int = MAX_MESSAGE_BYTES,
        close_timeout_s: float = CLOSE_HANDSHAKE_TIMEOUT_S,
    ) -> None:
        self.address = address
        self._max_message_bytes = max_message_bytes
        self._close_timeout_s = close_timeout_s
        self._ws: ClientConnection | None = None

    async def open(self) -> None:
        if self._ws is not None:
            raise TransportError("Transport already opened")

        self._ws = await ws_connect(
            self.address,
            open_timeout=None,
            close_timeout=self._close_timeout_s,
            max_size=self._max_message_bytes,
        )
        log_event({
            "level": "DEBUG",
            "event_type": "WS_HANDSHAKE_COMPLETE",
            "address": self.address,
        })

    async def recv(self) -> str | bytes:
        if self._ws is None:
            raise TransportClosedError(ABNORMAL_CLOSURE_CODE, "not_open")
        try:
            return await self._ws.recv()
        except ConnectionClosed as e:
            raise _closed_error(e) from e

    async def send(self, payload: str | bytes) -> None:
        if self._ws is None:
            raise TransportClosedError(ABNORMAL_CLOSURE_CODE, "not_open")
        try:
            await self._ws.send(payload)
        except ConnectionClosed as e:
            raise _closed_error(e) from e

    async def close(self, code: int, reason: str) -> None:
        if self._ws is None:
            return
        # 1006 is reserved for local use and must not appear in a close frame
        wire_code = NORMAL_CLOSURE_CODE if code == ABNORMAL_CLOSURE_CODE else code
        await self._ws.close(code=wire_code, reason=reason)


def websocket_transport_factory(*, max_message_bytes: int = MAX_MESSAGE_BYTES):
    """Build a TransportFactory bound to the configured message limit."""

    def _factory(address: str) -> Transport:
        return WebSocketTransport(address, max_message_bytes=max_message_bytes)

    return _factory
