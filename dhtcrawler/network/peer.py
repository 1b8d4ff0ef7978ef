"""
Peer - Addresses, records and node identities of discovered DHT peers.
"""

import ipaddress
import os
from dataclasses import dataclass


NODE_ID_SIZE = 20  # Mainline DHT node ids are 160-bit


@dataclass(frozen=True)
class PeerAddress:
    """Transport-qualified network address of a peer."""
    host: str
    port: int
    transport: str = "udp"

    @property
    def family(self) -> int:
        """IP version (4 or 6) of the host."""
        return ipaddress.ip_address(self.host).version

    def __str__(self) -> str:
        return self.host


@dataclass(frozen=True)
class PeerRecord:
    """
    A discovered peer.

    Attributes:
        address: Where the peer was reported to be reachable
        identity: Fixed-size binary node id, unique per peer
    """
    address: PeerAddress
    identity: bytes

    @property
    def identity_str(self) -> str:
        return encode_identity(self.identity)


def random_node_id() -> bytes:
    """Generate a random node id."""
    return os.urandom(NODE_ID_SIZE)


def encode_identity(identity: bytes) -> str:
    """Textual (hex) form of a binary node id."""
    return identity.hex()


def decode_identity(text: str) -> bytes:
    """
    Decode a textual node id.

    Raises:
        ValueError: If the text is not hex or has the wrong length
    """
    text = text.strip()
    if text.startswith("0x") or text.startswith("0X"):
        text = text[2:]
    identity = bytes.fromhex(text)
    if len(identity) != NODE_ID_SIZE:
        raise ValueError(
            f"node id must be {NODE_ID_SIZE} bytes, got {len(identity)}"
        )
    return identity
