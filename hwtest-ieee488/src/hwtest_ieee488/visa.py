"""PyVISA byte transport for IEEE 488.2 instruments.

This module provides a VISA-based :class:`~hwtest_ieee488.transport.ByteTransport`.
It wraps the PyVISA library, which is lazily imported to allow the rest of
hwtest-ieee488 to work without VISA installed.

Besides the byte channel, VISA exposes the bus-level services that a plain
socket cannot: hardware serial poll (``viReadSTB``) and device clear
(``viClear``). The session uses them when present.

Supported resource string formats include:
- TCPIP: ``TCPIP::192.168.1.100::INSTR`` (VXI-11 / HiSLIP)
- USB: ``USB0::0x0957::0x0407::MY12345678::0::INSTR``
- GPIB: ``GPIB0::22::INSTR``
- Serial: ``ASRL1::INSTR``
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from hwtest_ieee488.errors import ConnectionLost, TransportError, TransportTimeout

logger = logging.getLogger(__name__)

# VISA completion and error codes (VPP-4.3)
_VI_ERROR_TMO = -1073807339
_VI_ERROR_CONN_LOST = -1073807194


class VisaTransport:
    """Byte transport backed by PyVISA.

    Uses NI-style VISA resource strings (e.g.
    ``"TCPIP::192.168.1.100::INSTR"``) to address instruments. The
    ``pyvisa`` library is imported lazily on :meth:`open`.

    Attributes:
        resource_string: The VISA resource address string.
        is_open: Whether the resource is currently open.

    Args:
        resource_string: VISA resource address.
        timeout_ms: I/O timeout in milliseconds (applied on open).
        read_termination: Termination character VISA stops reads on.

    Example:
        >>> transport = VisaTransport("GPIB0::22::INSTR")
        >>> transport.open()
        >>> session = Session(transport)
    """

    def __init__(
        self,
        resource_string: str,
        *,
        timeout_ms: int = 5000,
        read_termination: str = "\n",
    ) -> None:
        self._resource_string = resource_string
        self._timeout_ms = timeout_ms
        self._read_termination = read_termination
        self._rm: Any = None
        self._resource: Any = None

    # -- Properties ----------------------------------------------------------

    @property
    def resource_string(self) -> str:
        """The VISA resource string."""
        return self._resource_string

    @property
    def is_open(self) -> bool:
        """Return True if the resource is currently open."""
        return self._resource is not None

    @property
    def read_timeout(self) -> float:
        """I/O timeout in seconds."""
        return self._timeout_ms / 1000

    @read_timeout.setter
    def read_timeout(self, seconds: float) -> None:
        if seconds <= 0:
            raise ValueError(f"read_timeout must be > 0, got {seconds}")
        # VISA timeouts are whole milliseconds.
        self._timeout_ms = max(int(seconds * 1000), 1)
        if self._resource is not None:
            self._resource.timeout = self._timeout_ms

    # -- Lifecycle -----------------------------------------------------------

    def open(self) -> None:
        """Open the VISA resource.

        Lazily imports ``pyvisa`` and creates a ``ResourceManager``.

        Raises:
            TransportError: If ``pyvisa`` is not installed or the resource
                cannot be opened.
        """
        if self._resource is not None:
            return

        try:
            import pyvisa  # type: ignore[import-not-found]  # pylint: disable=import-outside-toplevel
        except ImportError as exc:
            raise TransportError(
                "pyvisa library is not installed. Install with: pip install pyvisa"
            ) from exc

        try:
            self._rm = pyvisa.ResourceManager()
            self._resource = self._rm.open_resource(
                self._resource_string,
                read_termination=self._read_termination,
            )
            self._resource.timeout = self._timeout_ms
        except Exception as exc:
            self._resource = None
            if self._rm is not None:
                try:
                    self._rm.close()
                except Exception:  # pylint: disable=broad-except
                    pass
            self._rm = None
            raise TransportError(
                f"Failed to open VISA resource {self._resource_string!r}: {exc}"
            ) from exc
        logger.info("Opened VISA resource %s", self._resource_string)

    def close(self) -> None:
        """Close the VISA resource and resource manager.

        Safe to call multiple times.
        """
        if self._resource is not None:
            try:
                self._resource.close()
            except Exception:  # pylint: disable=broad-except
                logger.warning("Error closing VISA resource", exc_info=True)
            self._resource = None
            logger.info("Closed VISA resource %s", self._resource_string)
        if self._rm is not None:
            try:
                self._rm.close()
            except Exception:  # pylint: disable=broad-except
                logger.warning("Error closing VISA resource manager", exc_info=True)
            self._rm = None

    # -- Transport interface -------------------------------------------------

    def write(self, data: bytes) -> None:
        """Send *data* unchanged with ``write_raw``."""
        self._call(self._require().write_raw, data)

    def read_until(self, terminator: bytes) -> bytes:
        """Read with ``read_raw`` until the data ends with *terminator*."""
        resource = self._require()
        data = b""
        while not data.endswith(terminator):
            chunk: bytes = self._call(resource.read_raw)
            if not chunk:
                raise ConnectionLost(f"No data from {self._resource_string}")
            data += chunk
        return data

    def read_exact(self, length: int) -> bytes:
        """Read exactly *length* bytes with ``read_bytes``."""
        if length == 0:
            return b""
        data: bytes = self._call(self._require().read_bytes, length)
        return data

    def serial_poll(self) -> int:
        """Read the Status Byte with a hardware serial poll."""
        return int(self._call(self._require().read_stb))

    def device_clear(self) -> None:
        """Send the VISA device clear (SDC on GPIB)."""
        self._call(self._require().clear)

    # -- Private helpers -----------------------------------------------------

    def _require(self) -> Any:
        if self._resource is None:
            raise TransportError("VISA resource is not open")
        return self._resource

    def _call(self, func: Callable[..., Any], *args: Any) -> Any:
        """Invoke a pyvisa method, wrapping its errors in transport errors."""
        try:
            return func(*args)
        except Exception as exc:
            code = getattr(exc, "error_code", None)
            if code == _VI_ERROR_TMO:
                raise TransportTimeout(f"VISA timeout on {self._resource_string}") from exc
            if code == _VI_ERROR_CONN_LOST:
                raise ConnectionLost(f"VISA connection lost: {self._resource_string}") from exc
            raise TransportError(f"VISA I/O error on {self._resource_string}: {exc}") from exc
