"""
Frontier - the ordered set of peers one crawl session has discovered.

Records are kept in discovery order and never removed. ``send_ptr`` splits
the list into peers already queried ``[0, send_ptr)`` and peers still
pending ``[send_ptr, len)``.
"""

from typing import Iterator, List, Set

from dhtcrawler.network.peer import PeerAddress, PeerRecord
from dhtcrawler.utils.logger import TRACE, get_logger

logger = get_logger("frontier")


class Frontier:
    """
    Append-only, identity-deduplicated peer list.

    Capacity starts at ``initial_size`` and grows by the same increment
    whenever it is exhausted.
    """

    def __init__(self, initial_size: int):
        if initial_size < 1:
            raise ValueError("initial_size must be positive")
        self.growth = initial_size
        self.capacity = initial_size
        self._records: List[PeerRecord] = []
        self._identities: Set[bytes] = set()
        self._send_ptr = 0

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[PeerRecord]:
        return iter(self._records)

    def __getitem__(self, index: int) -> PeerRecord:
        return self._records[index]

    def __contains__(self, identity: bytes) -> bool:
        return identity in self._identities

    @property
    def send_ptr(self) -> int:
        return self._send_ptr

    @send_ptr.setter
    def send_ptr(self, value: int) -> None:
        if not 0 <= value <= len(self._records):
            raise ValueError(f"send_ptr {value} outside [0, {len(self._records)}]")
        self._send_ptr = value

    @property
    def exhausted(self) -> bool:
        """True when every discovered peer has been queried."""
        return self._send_ptr == len(self._records)

    def add(self, address: PeerAddress, identity: bytes) -> bool:
        """
        Append a peer unless its identity is already known.

        Returns:
            True if a new record was appended
        """
        if identity in self._identities:
            return False

        if len(self._records) + 1 >= self.capacity:
            self.capacity += self.growth
            logger.log(TRACE, f"Frontier capacity grown to {self.capacity}")

        try:
            self._records.append(PeerRecord(address, identity))
            self._identities.add(identity)
        except MemoryError:
            if len(self._records) > len(self._identities):
                self._records.pop()
            return False

        return True
