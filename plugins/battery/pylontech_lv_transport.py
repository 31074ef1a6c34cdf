# plugins/battery/pylontech_lv_transport.py
"""
Byte streams to the RS485 bus of a Pylontech battery stack.

Two kinds of link are supported:
- TCP to an RS485/Ethernet gateway (the usual setup)
- a local RS485 serial adapter

Both expose the same small interface used by the protocol reader:
``write``, ``read(size)`` (``b""`` when the timeout expires), ``set_timeout``,
``flush_input``, ``is_alive`` and ``close``. Failures to open or use the link
surface as ``GatewayConnectionError``.
"""

import logging
import socket
from enum import Enum
from typing import Optional

import serial
from serial.serialutil import SerialException, SerialTimeoutException

from .pylontech_lv_exceptions import GatewayConnectionError


class ConnectionType(Enum):
    TCP = "tcp"
    SERIAL = "serial"


class TcpByteStream:
    """TCP connection to an RS485 gateway."""

    def __init__(self, host: str, port: int, connect_timeout: float, io_timeout: float,
                 logger: Optional[logging.Logger] = None):
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.io_timeout = io_timeout
        self.logger = logger or logging.getLogger(__name__)
        self._sock: Optional[socket.socket] = None

    def open(self) -> "TcpByteStream":
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.settimeout(self.connect_timeout)
            sock.connect((self.host, self.port))
            sock.settimeout(self.io_timeout)
        except OSError as e:
            sock.close()
            raise GatewayConnectionError(f"{self.host}:{self.port}: {e}") from e
        self._sock = sock
        self.logger.debug(f"TCP stream to {self.host}:{self.port} opened (io timeout {self.io_timeout}s).")
        return self

    def set_timeout(self, seconds: float) -> None:
        if self._sock:
            self._sock.settimeout(seconds)

    def write(self, data: bytes) -> None:
        if not self._sock:
            raise GatewayConnectionError("socket not open")
        try:
            self._sock.sendall(data)
        except OSError as e:
            raise GatewayConnectionError(f"send failed: {e}") from e

    def read(self, size: int = 1) -> bytes:
        if not self._sock:
            raise GatewayConnectionError("socket not open")
        try:
            data = self._sock.recv(size)
        except socket.timeout:
            return b""
        except OSError as e:
            raise GatewayConnectionError(f"receive failed: {e}") from e
        if not data:
            raise GatewayConnectionError("connection closed by gateway")
        return data

    def flush_input(self) -> int:
        """Discards bytes left over from a previous exchange. Returns the number dropped."""
        if not self._sock:
            return 0
        dropped = 0
        timeout = self._sock.gettimeout()
        self._sock.setblocking(False)
        try:
            while True:
                try:
                    chunk = self._sock.recv(256)
                except BlockingIOError:
                    break
                except OSError as e:
                    raise GatewayConnectionError(f"receive failed: {e}") from e
                if not chunk:
                    raise GatewayConnectionError("connection closed by gateway")
                dropped += len(chunk)
        finally:
            self._sock.settimeout(timeout)
        return dropped

    def is_alive(self) -> bool:
        if not self._sock or self._sock.fileno() == -1:
            return False
        timeout = self._sock.gettimeout()
        self._sock.setblocking(False)
        try:
            # a readable socket with no data means the peer closed it
            return self._sock.recv(1, socket.MSG_PEEK) != b""
        except BlockingIOError:
            return True
        except OSError:
            return False
        finally:
            self._sock.settimeout(timeout)

    def close(self) -> None:
        if not self._sock:
            return
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # already disconnected by the peer
        self._sock.close()
        self._sock = None

    def __str__(self) -> str:
        return f"tcp://{self.host}:{self.port}"


class SerialByteStream:
    """Local RS485 adapter driven through pyserial."""

    def __init__(self, port: str, baud_rate: int, io_timeout: float,
                 logger: Optional[logging.Logger] = None):
        self.port = port
        self.baud_rate = baud_rate
        self.io_timeout = io_timeout
        self.logger = logger or logging.getLogger(__name__)
        self._serial: Optional[serial.Serial] = None

    def open(self) -> "SerialByteStream":
        try:
            self._serial = serial.Serial(port=self.port, baudrate=self.baud_rate,
                                         timeout=self.io_timeout, write_timeout=self.io_timeout)
        except (SerialException, ValueError) as e:
            raise GatewayConnectionError(f"{self.port}: {e}") from e
        self.logger.debug(f"Serial stream {self.port} @ {self.baud_rate} baud opened.")
        return self

    def set_timeout(self, seconds: float) -> None:
        if self._serial:
            self._serial.timeout = seconds
            self._serial.write_timeout = seconds

    def write(self, data: bytes) -> None:
        if not self._serial:
            raise GatewayConnectionError("serial port not open")
        try:
            self._serial.write(data)
        except (SerialTimeoutException, SerialException) as e:
            raise GatewayConnectionError(f"write failed: {e}") from e

    def read(self, size: int = 1) -> bytes:
        if not self._serial:
            raise GatewayConnectionError("serial port not open")
        try:
            return self._serial.read(size)
        except SerialException as e:
            raise GatewayConnectionError(f"read failed: {e}") from e

    def flush_input(self) -> int:
        if not self._serial:
            return 0
        waiting = self._serial.in_waiting
        self._serial.reset_input_buffer()
        return waiting

    def is_alive(self) -> bool:
        return bool(self._serial and self._serial.is_open)

    def close(self) -> None:
        if self._serial and self._serial.is_open:
            self._serial.close()
        self._serial = None

    def __str__(self) -> str:
        return f"serial://{self.port}"


def open_byte_stream(connection_type: ConnectionType, *, timeout: float, io_timeout: float,
                     host: Optional[str] = None, port: Optional[int] = None,
                     serial_port: Optional[str] = None, baud_rate: Optional[int] = None,
                     logger: Optional[logging.Logger] = None):
    """
    Opens a byte stream of the requested type.

    Args:
        connection_type: TCP gateway or local serial adapter.
        timeout: Connect timeout in seconds (TCP only).
        io_timeout: Read/write timeout in seconds.

    Returns:
        An opened ``TcpByteStream`` or ``SerialByteStream``.

    Raises:
        GatewayConnectionError: If the link cannot be opened.
    """
    if connection_type == ConnectionType.TCP:
        return TcpByteStream(host, port, timeout, io_timeout, logger).open()
    if connection_type == ConnectionType.SERIAL:
        return SerialByteStream(serial_port, baud_rate, io_timeout, logger).open()
    raise GatewayConnectionError(f"unsupported connection type '{connection_type}'")
