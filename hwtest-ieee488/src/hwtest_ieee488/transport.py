"""Byte transport protocol definition.

This module defines the narrow byte-channel interface consumed by
:class:`~hwtest_ieee488.session.Session`. Transports only move bytes; all
framing, parsing and status handling happens in the session.

Implementations include:
- :class:`hwtest_ieee488.visa.VisaTransport`: PyVISA-backed channel for real
  hardware (GPIB, USBTMC, VXI-11, HiSLIP)
- :class:`hwtest_ieee488.socket_transport.SocketTransport`: raw TCP socket
  (port 5025)
- :class:`hwtest_ieee488.emulator.SimulatedInstrument`: in-process instrument
  for tests

Optional capabilities are separate protocols, checked at runtime with
``isinstance``. A transport that lacks them still works; the session falls
back to ``*STB?`` and ``*CLS`` and leaves read timeouts and stale input to the
transport.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


class ByteTransport(Protocol):
    """Protocol for a half-duplex instrument byte channel.

    Callers are responsible for opening the transport before passing it to
    a session. Implementations raise
    :class:`~hwtest_ieee488.errors.TransportTimeout` when a read does not
    complete in time and :class:`~hwtest_ieee488.errors.ConnectionLost` when
    the channel goes away; any other I/O failure is a
    :class:`~hwtest_ieee488.errors.TransportError`.

    Example:
        >>> class LoopbackTransport:
        ...     def write(self, data: bytes) -> None: ...
        ...     def read_until(self, terminator: bytes) -> bytes: ...
        ...     def read_exact(self, length: int) -> bytes: ...
        ...     def close(self) -> None: ...
        ...
        >>> transport: ByteTransport = LoopbackTransport()  # Type checks OK
    """

    def write(self, data: bytes) -> None:
        """Send *data* exactly as given (terminator included)."""
        ...

    def read_until(self, terminator: bytes) -> bytes:
        """Read up to and including the next *terminator*.

        Returns:
            The bytes read, terminator included.
        """
        ...

    def read_exact(self, length: int) -> bytes:
        """Read exactly *length* bytes."""
        ...

    def close(self) -> None:
        """Close the transport and release resources."""
        ...


@runtime_checkable
class SupportsSerialPoll(Protocol):
    """Transport that can read the Status Byte with a hardware serial poll."""

    def serial_poll(self) -> int:
        """Return the Status Byte without using the message channel."""
        ...


@runtime_checkable
class SupportsDeviceClear(Protocol):
    """Transport that can send the bus-level device clear (SDC/DCL)."""

    def device_clear(self) -> None:
        """Clear the device input and output buffers."""
        ...


@runtime_checkable
class SupportsReadTimeout(Protocol):
    """Transport whose read timeout can be changed while it is open.

    The session shortens the timeout to stay within an operation-complete
    deadline and restores it afterwards.
    """

    @property
    def read_timeout(self) -> float:
        """Read timeout in seconds."""
        ...

    @read_timeout.setter
    def read_timeout(self, seconds: float) -> None: ...


@runtime_checkable
class SupportsDiscardInput(Protocol):
    """Transport that can drop received bytes nobody has read yet."""

    def discard_input(self) -> int:
        """Drop buffered input and input already waiting on the channel.

        Returns:
            The number of bytes dropped.
        """
        ...
