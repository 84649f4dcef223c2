"""
Transport contract.

This module defines the *interface only*: no reconnection, timers, or
classification live here.

Key invariants:
- One Transport instance serves exactly one connection attempt.
- recv() yields raw payloads (text or binary) in arrival order.
- A closed transport raises TransportClosedError from recv(), carrying the
  close code so the connection layer can tell normal from abnormal closure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

from protocol.errors import TransportError
from spec import ABNORMAL_CLOSURE_CODE


class TransportClosedError(TransportError):
    """The peer (or the network) closed the transport."""

    def __init__(self, code: int = ABNORMAL_CLOSURE_CODE, reason: str | None = None) -> None:
        super().__init__(f"Transport closed (code={code}, reason={reason!r})")
        self.code = code
        self.reason = reason


class Transport(ABC):
    """
    Abstract single-use bidirectional message transport.

    Non-responsibilities:
    - No state machine logic (CONNECTING/OPEN/etc.)
    - No retry policy
    - No control/audio classification
    """

    @abstractmethod
    async def open(self) -> None:
        """
        Perform the handshake.

        Raises:
            TransportError (or any OSError) if the handshake fails.
        """
        raise NotImplementedError

    @abstractmethod
    async def recv(self) -> str | bytes:
        """
        Wait for the next inbound payload.

        Raises:
            TransportClosedError once the transport is closed.
        """
        raise NotImplementedError

    @abstractmethod
    async def send(self, payload: str | bytes) -> None:
        """Write one text or binary message."""
        raise NotImplementedError

    @abstractmethod
    async def close(self, code: int, reason: str) -> None:
        """
        Close the transport.

        Contract:
        - close() MUST be idempotent.
        - close() on a transport that never opened is a no-op.
        """
        raise NotImplementedError


TransportFactory = Callable[[str], Transport]
