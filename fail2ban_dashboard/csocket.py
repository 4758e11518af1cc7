import logging
import re
import socket
import threading
from typing import Optional, Self, Sequence

from fail2ban_dashboard.codec import decode, encode
from fail2ban_dashboard.constants import SOCKET_CHUNK_SIZE, TRACE
from fail2ban_dashboard.exceptions import DecodeError, TransportError
from fail2ban_dashboard.protocol import PROTO_CLOSE_MSG, PROTO_END_MSG, WireValue

SOCKET_PATTERN = re.compile(r"^(tcp|unix)://(.*)")

logger = logging.getLogger(__name__)


def parse_endpoint(endpoint: str) -> tuple[socket.AddressFamily, str | tuple[str, int]]:
    endpoint_match = SOCKET_PATTERN.match(endpoint)
    if not endpoint_match:
        # a bare path is a unix socket
        return socket.AddressFamily.AF_UNIX, endpoint

    protocol, address = endpoint_match.groups()
    match protocol:
        case "tcp":
            host, _, port = address.rpartition(":")
            if not host or not port.isdigit():
                raise ValueError(f"Invalid tcp endpoint '{address}', expected host:port")
            return socket.AddressFamily.AF_INET, (host, int(port))
        case "unix":
            return socket.AddressFamily.AF_UNIX, address
        case e:
            raise ValueError(f"Unsupported protocol {e}://")


class F2BSocket:
    """Framed connection to the fail2ban server socket.

    Every request is a pickled list of strings followed by ``<F2B_END_COMMAND>``;
    responses carry the same terminator and no length prefix, so reads keep
    accumulating chunks until the terminator shows up.
    """

    def __init__(
        self,
        endpoint: str,
        net_chunk_size: Optional[int] = None,
        timeout: Optional[float] = None,
        sock: Optional[socket.socket] = None,
    ) -> Self:
        self._endpoint = endpoint
        self._chunk_size = net_chunk_size or SOCKET_CHUNK_SIZE
        self._lock = threading.Lock()

        if sock is None:
            socket_type, address = parse_endpoint(endpoint)
            sock = socket.socket(socket_type, socket.SocketKind.SOCK_STREAM)
            try:
                sock.settimeout(timeout)
                sock.connect(address)
            except OSError as e:
                sock.close()
                raise TransportError(f"Failed to connect to fail2ban socket at {endpoint}: {e}") from e
        else:
            sock.settimeout(timeout)

        self._socket = sock
        logger.debug(f"Connected to fail2ban socket at {endpoint}")

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def closed(self) -> bool:
        return self._socket is None

    def __serialize_req(self, tokens: Sequence[str]) -> bytes:
        return encode(tokens) + PROTO_END_MSG

    def __deserialize_res(self, data: bytearray) -> WireValue:
        logger.log(TRACE, "Raw response data (first 200 bytes): %r", bytes(data[:200]))
        return decode(data)

    def __check_open(self):
        if self._socket is None:
            raise TransportError("Socket is closed")

    def __discard(self):
        # caller holds the lock; the peer may still send the reply we gave up on
        sock, self._socket = self._socket, None
        if sock is not None:
            logger.debug(f"Dropping connection to {self._endpoint} after a failed exchange")
            sock.close()

    def read(self) -> WireValue:
        self.__check_open()
        data = bytearray()
        end = -1
        iterations = 0
        while end == -1:
            try:
                chunk = self._socket.recv(self._chunk_size)
            except socket.timeout as e:
                raise TransportError(f"Timed out waiting for response after {len(data)} bytes") from e
            except OSError as e:
                raise TransportError(f"Error reading from socket after {len(data)} bytes: {e}") from e

            if not len(chunk):
                raise TransportError(f"Connection closed by peer after {len(data)} bytes")

            iterations += 1
            # the terminator may straddle the previous chunk, never anything older
            start = max(0, len(data) - len(PROTO_END_MSG) + 1)
            data += chunk
            end = data.find(PROTO_END_MSG, start)
            logger.log(TRACE, "Read iteration %d: received %d bytes, total %d bytes", iterations, len(chunk), len(data))

        return self.__deserialize_res(data[:end])

    def write(self, tokens: Sequence[str]):
        self.__check_open()
        buffer = self.__serialize_req(tokens)
        try:
            self._socket.sendall(buffer)
        except OSError as e:
            raise TransportError(f"Failed to write command {list(tokens)}: {e}") from e

    def send_command(self, tokens: Sequence[str]) -> WireValue:
        with self._lock:
            logger.log(TRACE, "Sending command to fail2ban: %s", list(tokens))
            try:
                self.write(tokens)
                return self.read()
            except DecodeError:
                # the whole frame was consumed, the stream is still in step
                raise
            except Exception:
                self.__discard()
                raise

    def close(self):
        with self._lock:
            if not self._socket:
                return

            try:
                self._socket.sendall(PROTO_CLOSE_MSG + PROTO_END_MSG)
                self._socket.shutdown(socket.SHUT_RDWR)
            except OSError as e:
                logger.debug("Failed to gracefully close socket", exc_info=e)
            finally:
                self._socket.close()
                self._socket = None

    def __enter__(self) -> "F2BSocket":
        return self

    def __exit__(self, *exc_info):
        self.close()


def send_command(sock: F2BSocket, tokens: Sequence[str]) -> WireValue:
    return sock.send_command(tokens)
