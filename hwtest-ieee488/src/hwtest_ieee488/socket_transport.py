"""Raw TCP socket transport.

Most LAN instruments accept SCPI over a plain TCP socket, conventionally on
port 5025. The socket has no out-of-band channel, so this transport offers
neither serial poll nor device clear; the session falls back to ``*STB?``
and ``*CLS``, and drops stale input with :meth:`SocketTransport.discard_input`.

Example:
    >>> transport = SocketTransport("192.168.1.100")
    >>> transport.open()
    >>> session = Session(transport)
"""

from __future__ import annotations

import logging
import socket

from hwtest_ieee488.errors import ConnectionLost, TransportError, TransportTimeout

logger = logging.getLogger(__name__)

DEFAULT_PORT = 5025


class SocketTransport:
    """Byte transport over a raw TCP connection.

    Attributes:
        host: Instrument host name or address.
        port: Instrument TCP port.
        is_open: Whether the socket is connected.

    Args:
        host: Instrument host name or address.
        port: TCP port (default 5025).
        timeout: Connect and read timeout in seconds.
    """

    def __init__(self, host: str, port: int = DEFAULT_PORT, *, timeout: float = 5.0) -> None:
        self._host = host
        self._port = port
        self._timeout = timeout
        self._socket: socket.socket | None = None
        self._buffer = bytearray()

    # -- Properties ----------------------------------------------------------

    @property
    def host(self) -> str:
        """Instrument host name or address."""
        return self._host

    @property
    def port(self) -> int:
        """Instrument TCP port."""
        return self._port

    @property
    def is_open(self) -> bool:
        """Return True if the socket is connected."""
        return self._socket is not None

    @property
    def read_timeout(self) -> float:
        """Read timeout in seconds."""
        return self._timeout

    @read_timeout.setter
    def read_timeout(self, seconds: float) -> None:
        if seconds <= 0:
            raise ValueError(f"read_timeout must be > 0, got {seconds}")
        self._timeout = seconds
        if self._socket is not None:
            self._socket.settimeout(seconds)

    # -- Lifecycle -----------------------------------------------------------

    def open(self) -> None:
        """Connect to the instrument.

        Raises:
            TransportError: If the connection cannot be established.
        """
        if self._socket is not None:
            return
        try:
            sock = socket.create_connection((self._host, self._port), timeout=self._timeout)
        except OSError as exc:
            raise TransportError(
                f"Failed to connect to {self._host}:{self._port}: {exc}"
            ) from exc
        # Disable Nagle for short command messages.
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        self._socket = sock
        self._buffer.clear()
        logger.info("Connected to %s:%d", self._host, self._port)

    def close(self) -> None:
        """Close the connection. Safe to call multiple times."""
        if self._socket is None:
            return
        try:
            self._socket.close()
        except OSError:
            logger.warning("Error closing socket", exc_info=True)
        self._socket = None
        self._buffer.clear()
        logger.info("Disconnected from %s:%d", self._host, self._port)

    # -- Transport interface -------------------------------------------------

    def write(self, data: bytes) -> None:
        """Send all of *data*."""
        sock = self._require()
        try:
            sock.sendall(data)
        except socket.timeout as exc:
            raise TransportTimeout(f"Write to {self._host}:{self._port} timed out") from exc
        except OSError as exc:
            raise ConnectionLost(f"Write to {self._host}:{self._port} failed: {exc}") from exc

    def read_until(self, terminator: bytes) -> bytes:
        """Read up to and including the next *terminator*."""
        while True:
            index = self._buffer.find(terminator)
            if index >= 0:
                end = index + len(terminator)
                data = bytes(self._buffer[:end])
                del self._buffer[:end]
                return data
            self._fill()

    def read_exact(self, length: int) -> bytes:
        """Read exactly *length* bytes."""
        while len(self._buffer) < length:
            self._fill()
        data = bytes(self._buffer[:length])
        del self._buffer[:length]
        return data

    def discard_input(self) -> int:
        """Drop buffered input and any bytes already received by the socket.

        Returns:
            The number of bytes dropped.

        Raises:
            ConnectionLost: If the peer closed the connection.
        """
        sock = self._require()
        discarded = len(self._buffer)
        self._buffer.clear()
        sock.setblocking(False)
        try:
            while True:
                try:
                    chunk = sock.recv(4096)
                except BlockingIOError:
                    break
                except OSError as exc:
                    raise ConnectionLost(
                        f"Read from {self._host}:{self._port} failed: {exc}"
                    ) from exc
                if not chunk:
                    raise ConnectionLost(f"Connection to {self._host}:{self._port} closed by peer")
                discarded += len(chunk)
        finally:
            sock.settimeout(self._timeout)
        if discarded:
            logger.debug("Discarded %d unread bytes from %s:%d", discarded, self._host, self._port)
        return discarded

    # -- Private helpers -----------------------------------------------------

    def _require(self) -> socket.socket:
        if self._socket is None:
            raise TransportError("Socket is not open")
        return self._socket

    def _fill(self) -> None:
        sock = self._require()
        try:
            chunk = sock.recv(4096)
        except socket.timeout as exc:
            raise TransportTimeout(f"Read from {self._host}:{self._port} timed out") from exc
        except OSError as exc:
            raise ConnectionLost(f"Read from {self._host}:{self._port} failed: {exc}") from exc
        if not chunk:
            raise ConnectionLost(f"Connection to {self._host}:{self._port} closed by peer")
        self._buffer.extend(chunk)
