"""TCP server exposing a simulated instrument as a raw socket instrument.

Serves a :class:`~hwtest_ieee488.emulator.SimulatedInstrument` the way LAN
instruments serve SCPI on port 5025, so that
:class:`~hwtest_ieee488.socket_transport.SocketTransport`, PyVISA
``::SOCKET`` resources, telnet or netcat can talk to it.

Example:
    Start a server on an ephemeral port::

        from hwtest_ieee488 import InstrumentServer, SimulatedInstrument

        server = InstrumentServer(SimulatedInstrument(), port=0)
        server.start()

        host, port = server.address
        print(f"Connect via: TCPIP::{host}::{port}::SOCKET")

        server.stop()
"""

from __future__ import annotations

import logging
import socketserver
import threading
from typing import Any

from hwtest_ieee488.emulator import SimulatedInstrument
from hwtest_ieee488.errors import ConnectionLost

logger = logging.getLogger(__name__)


class _InstrumentRequestHandler(socketserver.StreamRequestHandler):
    """Forward bytes from one TCP connection to the instrument.

    Every received chunk is written to the instrument, which executes each
    complete program message; any output produced is sent back at once.
    """

    server: _InstrumentTcpServer

    def handle(self) -> None:
        """Relay data until the client disconnects."""
        peer = self.client_address
        logger.info("Client connected: %s", peer)
        while True:
            chunk = self.request.recv(4096)
            if not chunk:
                break
            with self.server.lock:
                try:
                    self.server.instrument.write(chunk)
                except ConnectionLost:
                    break
                output = self.server.instrument.read_available()
            if output:
                self.wfile.write(output)
                self.wfile.flush()
        logger.info("Client disconnected: %s", peer)


class _InstrumentTcpServer(socketserver.TCPServer):
    """TCPServer subclass that holds the served instrument.

    Attributes:
        allow_reuse_address: Set to True to allow quick server restart.
        instrument: The simulated instrument to serve.
        lock: Serializes access to the instrument.
    """

    allow_reuse_address = True

    def __init__(
        self,
        server_address: tuple[str, int],
        instrument: SimulatedInstrument,
        **kwargs: Any,
    ) -> None:
        self.instrument = instrument
        self.lock = threading.Lock()
        super().__init__(server_address, _InstrumentRequestHandler, **kwargs)


class InstrumentServer:
    """TCP server wrapping a :class:`SimulatedInstrument`.

    Runs a TCP server in a background daemon thread. The server handles one
    client connection at a time, like most socket instruments.

    Args:
        instrument: The simulated instrument to serve.
        host: Bind address (default ``"127.0.0.1"``).
        port: Bind port (default ``5025``). Use ``0`` for an OS-assigned
            ephemeral port.
    """

    def __init__(
        self,
        instrument: SimulatedInstrument,
        host: str = "127.0.0.1",
        port: int = 5025,
    ) -> None:
        self._server = _InstrumentTcpServer((host, port), instrument)
        self._thread: threading.Thread | None = None

    @property
    def instrument(self) -> SimulatedInstrument:
        """The served instrument."""
        return self._server.instrument

    def start(self) -> None:
        """Start serving in a daemon thread."""
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        logger.info("Instrument server listening on %s:%d", *self.address)

    def stop(self) -> None:
        """Shut down the server and wait for the thread to exit."""
        self._server.shutdown()
        if self._thread is not None:
            self._thread.join()
        self._server.server_close()
        logger.info("Instrument server stopped")

    @property
    def address(self) -> tuple[str, int]:
        """Return the actual bound ``(host, port)`` address.

        Useful when binding to port 0 to get an ephemeral port.
        """
        addr = self._server.server_address
        return (str(addr[0]), int(addr[1]))

    def __enter__(self) -> InstrumentServer:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
