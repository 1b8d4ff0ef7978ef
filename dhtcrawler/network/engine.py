"""
DHT engine adapter interface.

A crawl session drives its DHT library only through this narrow capability
interface: it never reaches into the library's internals. Each session owns
one engine (one network identity) exclusively for its lifetime.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

from dhtcrawler.network.peer import PeerAddress


DiscoveryCallback = Callable[[PeerAddress, bytes], None]


class EngineError(Exception):
    """Raised when an engine cannot be created or a request cannot be sent."""


class DHTEngine(ABC):
    """
    Capability interface wrapped around a concrete DHT implementation.

    ``iterate()`` must invoke the discovery callback synchronously, on the
    calling thread, so a session's frontier is only ever touched from the
    session's own thread.
    """

    def __init__(self) -> None:
        self._on_discovered: Optional[DiscoveryCallback] = None
        self._connected = False

    def set_discovery_callback(self, callback: Optional[DiscoveryCallback]) -> None:
        """Register the function called once per peer reported in a response."""
        self._on_discovered = callback

    def _discovered(self, address: PeerAddress, identity: bytes) -> None:
        if self._on_discovered is not None:
            self._on_discovered(address, identity)

    @property
    def connected(self) -> bool:
        """True once the engine has heard back from at least one peer."""
        return self._connected

    @property
    @abstractmethod
    def node_id(self) -> bytes:
        """Our own identity on the network."""

    @abstractmethod
    def bootstrap(self, host: str, port: int, identity: bytes) -> None:
        """
        Enter the network through a well-known peer.

        Raises:
            EngineError: If the request could not be sent
        """

    @abstractmethod
    def iterate(self) -> None:
        """Process pending network I/O; may fire the discovery callback."""

    @abstractmethod
    def iteration_interval(self) -> float:
        """Recommended sleep between ``iterate()`` calls, in seconds."""

    @abstractmethod
    def get_nodes(self, address: PeerAddress, identity: bytes, target: bytes) -> None:
        """Ask the peer at ``address`` for the nodes it knows closest to ``target``."""

    @abstractmethod
    def close(self) -> None:
        """Release sockets and any other resources."""


EngineFactory = Callable[[], DHTEngine]
