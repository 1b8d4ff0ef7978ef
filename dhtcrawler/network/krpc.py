"""
KRPC Engine - Mainline DHT adapter over non-blocking UDP sockets.

Implements the DHTEngine interface:
- ``find_node`` queries with transaction-id matching and expiry
- Reporting every node listed in a matched response via the discovery callback
- Answering incoming ``ping`` / ``find_node`` so peers keep us in their tables
- Connection status: connected once any matched response arrives

All socket I/O happens inside ``iterate()``, on the caller's thread.
"""

import socket
import time
from typing import Callable, Dict, List, Optional, Tuple

from dhtcrawler.network import protocol
from dhtcrawler.network.engine import DHTEngine, EngineError
from dhtcrawler.network.peer import NODE_ID_SIZE, PeerAddress, random_node_id
from dhtcrawler.utils.logger import get_logger

logger = get_logger("engine")


ITERATION_INTERVAL = 0.05  # seconds between iterate() calls
QUERY_TIMEOUT = 10.0  # seconds before an unanswered transaction is dropped
RECV_BATCH = 256  # max datagrams drained per socket per iteration
MAX_DATAGRAM = 65536
K = 8  # nodes returned when answering find_node


class KRPCEngine(DHTEngine):
    """
    A single Mainline DHT identity bound to its own UDP port(s).

    Args:
        bind_host: IPv4 address to bind
        bind_port: Port to bind (0 = ephemeral); IPv6 uses the same port number
        node_id: Our identity (random if omitted)
        query_timeout: Seconds to wait for a response before forgetting the query
        clock: Monotonic time source
    """

    def __init__(
        self,
        bind_host: str = "0.0.0.0",
        bind_port: int = 0,
        node_id: Optional[bytes] = None,
        query_timeout: float = QUERY_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__()
        self._node_id = node_id or random_node_id()
        self.query_timeout = query_timeout
        self._clock = clock
        self._pending: Dict[bytes, Tuple[Tuple[str, int], float]] = {}
        self._contacts: List[Tuple[PeerAddress, bytes]] = []

        try:
            self._sock4 = self._open_socket(socket.AF_INET, bind_host, bind_port)
        except OSError as e:
            raise EngineError(f"cannot bind UDP {bind_host}:{bind_port}: {e}") from e

        port = self._sock4.getsockname()[1]
        try:
            self._sock6: Optional[socket.socket] = self._open_socket(socket.AF_INET6, "::", port)
        except OSError as e:
            logger.debug(f"IPv6 unavailable, continuing with IPv4 only: {e}")
            self._sock6 = None

        logger.debug(f"Engine bound on UDP port {port}, id {self._node_id.hex()}")

    @staticmethod
    def _open_socket(family: int, host: str, port: int) -> socket.socket:
        sock = socket.socket(family, socket.SOCK_DGRAM)
        try:
            if family == socket.AF_INET6:
                sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
            sock.bind((host, port))
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise
        return sock

    @property
    def node_id(self) -> bytes:
        return self._node_id

    @property
    def pending_count(self) -> int:
        """Number of queries still awaiting a response."""
        return len(self._pending)

    # =========================================================================
    # Outbound
    # =========================================================================

    def bootstrap(self, host: str, port: int, identity: bytes) -> None:
        try:
            infos = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)
        except (OSError, ValueError) as e:
            # ValueError covers UnicodeError from IDNA encoding of bad hostnames
            raise EngineError(f"cannot resolve {host}: {e}") from e

        for family, _, _, _, sockaddr in infos:
            if self._socket_for(family) is None:
                continue
            address = PeerAddress(sockaddr[0], sockaddr[1])
            if not self._send_find_node(address, self._node_id):
                raise EngineError(f"cannot send to {host} {port}")
            return

        raise EngineError(f"no usable address for {host}")

    def get_nodes(self, address: PeerAddress, identity: bytes, target: bytes) -> None:
        # Mainline queries are unauthenticated; identity is only needed by
        # engines that encrypt per peer.
        self._send_find_node(address, target)

    def _send_find_node(self, address: PeerAddress, target: bytes) -> bool:
        tid = protocol.new_transaction_id()
        msg = protocol.create_find_node(tid, self._node_id, target)
        if not self._send(msg, address.host, address.port):
            return False
        self._pending[tid] = ((address.host, address.port), self._clock())
        return True

    def _socket_for(self, family: int) -> Optional[socket.socket]:
        return self._sock6 if family == socket.AF_INET6 else self._sock4

    def _send(self, msg: dict, host: str, port: int) -> bool:
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = self._socket_for(family)
        if sock is None:
            return False
        try:
            sock.sendto(protocol.encode(msg), (host, port))
            return True
        except OSError as e:
            logger.debug(f"Send to {host} {port} failed: {e}")
            return False

    # =========================================================================
    # Inbound
    # =========================================================================

    def iterate(self) -> None:
        for sock in (self._sock4, self._sock6):
            if sock is None:
                continue
            for _ in range(RECV_BATCH):
                try:
                    data, addr = sock.recvfrom(MAX_DATAGRAM)
                except (BlockingIOError, InterruptedError):
                    break
                except OSError as e:
                    # ICMP port unreachable surfaces here on some platforms
                    logger.debug(f"Receive error: {e}")
                    continue
                self._handle_datagram(data, (addr[0], addr[1]))

        self._expire_pending()

    def iteration_interval(self) -> float:
        return ITERATION_INTERVAL

    def _handle_datagram(self, data: bytes, addr: Tuple[str, int]) -> None:
        try:
            msg = protocol.decode(data)
        except protocol.ProtocolError as e:
            logger.debug(f"Dropping datagram from {addr[0]}: {e}")
            return

        kind = msg[b"y"]
        if kind == protocol.RESPONSE:
            self._handle_response(msg, addr)
        elif kind == protocol.QUERY:
            self._handle_query(msg, addr)
        elif kind == protocol.ERROR:
            pending = self._pending.pop(msg[b"t"], None)
            if pending is not None:
                logger.debug(f"Error from {addr[0]}: {msg.get(b'e')}")

    def _handle_response(self, msg: dict, addr: Tuple[str, int]) -> None:
        pending = self._pending.pop(msg[b"t"], None)
        if pending is None:
            return

        r = msg.get(b"r")
        if not isinstance(r, dict):
            return

        sender = r.get(b"id")
        if isinstance(sender, bytes) and len(sender) == NODE_ID_SIZE:
            self._remember(PeerAddress(addr[0], addr[1]), sender)
            self._connected = True

        nodes = []
        compact = r.get(b"nodes")
        if isinstance(compact, bytes):
            nodes.extend(protocol.parse_nodes(compact))
        compact6 = r.get(b"nodes6")
        if isinstance(compact6, bytes):
            nodes.extend(protocol.parse_nodes6(compact6))

        for address, identity in nodes:
            if identity == self._node_id:
                continue
            self._discovered(address, identity)

    def _handle_query(self, msg: dict, addr: Tuple[str, int]) -> None:
        tid = msg[b"t"]
        method = msg.get(b"q")

        if method == b"ping":
            reply = protocol.create_response(tid, self._node_id)
        elif method == b"find_node":
            reply = protocol.create_response(
                tid, self._node_id, nodes=protocol.pack_nodes(self._contacts[-K:])
            )
        else:
            reply = protocol.create_error(tid, protocol.ERR_METHOD_UNKNOWN, "Method Unknown")

        self._send(reply, addr[0], addr[1])

    def _remember(self, address: PeerAddress, identity: bytes) -> None:
        self._contacts.append((address, identity))
        if len(self._contacts) > K * 4:
            del self._contacts[:-K]

    def _expire_pending(self) -> None:
        deadline = self._clock() - self.query_timeout
        expired = [tid for tid, (_, sent) in self._pending.items() if sent <= deadline]
        for tid in expired:
            del self._pending[tid]

    def close(self) -> None:
        for sock in (self._sock4, self._sock6):
            if sock is not None:
                sock.close()
        self._pending.clear()
        self._connected = False


def create_engine(bind_host: str = "0.0.0.0", bind_port: int = 0) -> KRPCEngine:
    """Create a KRPC engine bound to the given address."""
    return KRPCEngine(bind_host=bind_host, bind_port=bind_port)
