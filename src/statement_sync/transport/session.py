"""Blocking TLS line-protocol session shared by the IMAP and SMTP clients."""

import logging
import socket
import ssl
import time
from typing import Callable, Optional

from ..errors import SessionConnectionError

logger = logging.getLogger(__name__)

Predicate = Callable[[str], bool]
Connector = Callable[[str, int, float], socket.socket]


def tls_connect(host: str, port: int, timeout: float) -> socket.socket:
    """Open an implicit-TLS socket to host:port.

    Args:
        host: Server hostname (also used for SNI and certificate checks)
        port: Server port
        timeout: Connect/handshake timeout in seconds

    Returns:
        socket.socket: Connected TLS socket
    """
    context = ssl.create_default_context()
    raw = socket.create_connection((host, port), timeout=timeout)
    try:
        return context.wrap_socket(raw, server_hostname=host)
    except (OSError, ssl.SSLError):
        raw.close()
        raise


class LineSession:
    """One TLS connection speaking a CRLF-terminated text protocol.

    Reads are destructive: whatever a read returns is gone from the socket, so
    callers must drain each response before issuing the next command. Exactly
    one command may be in flight per session.
    """

    line_terminator = "\r\n"
    read_encoding = "latin-1"  # 1:1 byte mapping, literal sizes stay valid
    write_encoding = "utf-8"
    read_size = 65536

    def __init__(
        self,
        host: str,
        port: int,
        connect_timeout: float = 30.0,
        idle_timeout: float = 10.0,
        connector: Optional[Connector] = None,
    ):
        """Initialize a session (does not connect).

        Args:
            host: Server hostname
            port: Server port (implicit TLS)
            connect_timeout: Timeout for DNS, TCP connect and TLS handshake
            idle_timeout: Longest wait for a single chunk during a read
            connector: Socket opener, defaults to tls_connect (tests inject fakes)
        """
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.idle_timeout = idle_timeout
        self._connector = connector or tls_connect
        self._sock: Optional[socket.socket] = None

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def connect(self) -> None:
        """Open the TLS connection.

        Raises:
            SessionConnectionError: On DNS, TCP or TLS handshake failure
        """
        if self._sock is not None:
            return

        try:
            self._sock = self._connector(self.host, self.port, self.connect_timeout)
        except (OSError, ssl.SSLError) as e:
            raise SessionConnectionError(f"Could not connect to {self.host}:{self.port}: {e}") from e

        logger.debug(f"Connected to {self.host}:{self.port}")

    def read_until(
        self,
        predicate: Predicate,
        timeout: float,
        idle_timeout: Optional[float] = None,
    ) -> str:
        """Accumulate server output until predicate(accumulated) is true.

        Stops early when the overall timeout elapses, when no chunk arrives
        within idle_timeout, or on EOF. Never raises on timeout: the partial
        (possibly empty) text is returned and the caller decides.

        Args:
            predicate: Completion test applied to everything read so far
            timeout: Overall ceiling in seconds
            idle_timeout: Per-chunk wait, defaults to the session idle timeout

        Returns:
            str: Accumulated text

        Raises:
            SessionConnectionError: If the socket fails for a reason other than a timeout
        """
        sock = self._require_socket()
        idle = idle_timeout if idle_timeout is not None else self.idle_timeout
        deadline = time.monotonic() + timeout
        accumulated = ""

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.debug(f"Read ceiling of {timeout}s reached with {len(accumulated)} chars")
                break

            sock.settimeout(min(remaining, idle))
            try:
                data = sock.recv(self.read_size)
            except socket.timeout:
                logger.debug(f"No data within {idle}s, returning {len(accumulated)} chars")
                break
            except OSError as e:
                raise SessionConnectionError(f"Connection to {self.host} failed during read: {e}") from e

            if not data:
                logger.debug(f"Connection to {self.host} closed by peer")
                break

            accumulated += data.decode(self.read_encoding)
            if predicate(accumulated):
                break

        return accumulated

    def send_line(self, text: str) -> None:
        """Write text followed by the protocol line terminator."""
        self.send_raw(text + self.line_terminator)

    def send_raw(self, text: str) -> None:
        """Write text exactly as given.

        Raises:
            SessionConnectionError: If the write fails
        """
        sock = self._require_socket()
        try:
            sock.sendall(text.encode(self.write_encoding))
        except OSError as e:
            raise SessionConnectionError(f"Connection to {self.host} failed during write: {e}") from e

    def send_command(self, text: str, predicate: Predicate, timeout: float) -> str:
        """Send one command line and read its complete response."""
        self.send_line(text)
        return self.read_until(predicate, timeout)

    def close(self) -> None:
        """Close the socket. Safe to call more than once."""
        if self._sock is None:
            return
        try:
            self._sock.close()
        except OSError as e:
            logger.debug(f"Ignoring error while closing socket to {self.host}: {e}")
        self._sock = None

    def _require_socket(self) -> socket.socket:
        if self._sock is None:
            raise SessionConnectionError(f"Session to {self.host}:{self.port} is not connected")
        return self._sock

    def __enter__(self) -> "LineSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
