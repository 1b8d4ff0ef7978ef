"""
KRPC Protocol - Message building and parsing for the Mainline DHT (BEP-5).

Messages are bencoded dictionaries:
    t: transaction id | y: b"q" query, b"r" response, b"e" error
Node info returned by ``find_node`` is packed as compact strings:
    nodes  = [id (20) | ipv4 (4) | port (2)] ...
    nodes6 = [id (20) | ipv6 (16) | port (2)] ...
"""

import os
import socket
import struct
from typing import List, Tuple

import bencodepy

from dhtcrawler.network.peer import NODE_ID_SIZE, PeerAddress


QUERY = b"q"
RESPONSE = b"r"
ERROR = b"e"

TID_BYTES = 4
COMPACT_NODE_SIZE = NODE_ID_SIZE + 4 + 2
COMPACT_NODE6_SIZE = NODE_ID_SIZE + 16 + 2

# KRPC error codes
ERR_GENERIC = 201
ERR_SERVER = 202
ERR_PROTOCOL = 203
ERR_METHOD_UNKNOWN = 204


class ProtocolError(ValueError):
    """Raised for datagrams that are not well-formed KRPC messages."""


def new_transaction_id() -> bytes:
    return os.urandom(TID_BYTES)


def encode(msg: dict) -> bytes:
    """Bencode a KRPC message."""
    return bencodepy.encode(msg)


def decode(data: bytes) -> dict:
    """
    Decode a datagram into a KRPC message dict.

    Raises:
        ProtocolError: If the data is not a bencoded dict with t and y keys
    """
    try:
        msg = bencodepy.decode(data)
    except (bencodepy.BencodeDecodeError, ValueError, TypeError, IndexError) as e:
        raise ProtocolError(f"undecodable datagram: {e}") from e

    if not isinstance(msg, dict) or b"t" not in msg or b"y" not in msg:
        raise ProtocolError("datagram is not a KRPC message")
    if not isinstance(msg[b"t"], bytes) or not isinstance(msg[b"y"], bytes):
        raise ProtocolError("transaction id and message type must be strings")
    return msg


def create_find_node(tid: bytes, sender_id: bytes, target: bytes) -> dict:
    """Create a find_node query."""
    return {
        b"t": tid,
        b"y": QUERY,
        b"q": b"find_node",
        b"a": {b"id": sender_id, b"target": target},
    }


def create_response(tid: bytes, sender_id: bytes, **values: bytes) -> dict:
    """Create a response carrying our id and any extra values."""
    r = {b"id": sender_id}
    for key, value in values.items():
        r[key.encode()] = value
    return {b"t": tid, b"y": RESPONSE, b"r": r}


def create_error(tid: bytes, code: int, message: str) -> dict:
    """Create an error message."""
    return {b"t": tid, b"y": ERROR, b"e": [code, message.encode()]}


def pack_nodes(nodes: List[Tuple[PeerAddress, bytes]]) -> bytes:
    """Pack IPv4 (address, identity) pairs into compact node info."""
    parts = []
    for address, identity in nodes:
        if address.family != 4:
            continue
        parts.append(identity + socket.inet_aton(address.host) + struct.pack(">H", address.port))
    return b"".join(parts)


def parse_nodes(compact: bytes) -> List[Tuple[PeerAddress, bytes]]:
    """
    Parse compact IPv4 node info.

    Trailing partial entries and entries with port 0 are dropped.

    Returns:
        List of (address, identity) tuples
    """
    nodes = []
    for offset in range(0, len(compact) - COMPACT_NODE_SIZE + 1, COMPACT_NODE_SIZE):
        entry = compact[offset:offset + COMPACT_NODE_SIZE]
        identity = entry[:NODE_ID_SIZE]
        host = socket.inet_ntoa(entry[NODE_ID_SIZE:NODE_ID_SIZE + 4])
        port = struct.unpack(">H", entry[NODE_ID_SIZE + 4:])[0]
        if port == 0:
            continue
        nodes.append((PeerAddress(host, port), identity))
    return nodes


def parse_nodes6(compact: bytes) -> List[Tuple[PeerAddress, bytes]]:
    """Parse compact IPv6 node info (BEP-32)."""
    nodes = []
    for offset in range(0, len(compact) - COMPACT_NODE6_SIZE + 1, COMPACT_NODE6_SIZE):
        entry = compact[offset:offset + COMPACT_NODE6_SIZE]
        identity = entry[:NODE_ID_SIZE]
        host = socket.inet_ntop(socket.AF_INET6, entry[NODE_ID_SIZE:NODE_ID_SIZE + 16])
        port = struct.unpack(">H", entry[NODE_ID_SIZE + 16:])[0]
        if port == 0:
            continue
        nodes.append((PeerAddress(host, port), identity))
    return nodes
