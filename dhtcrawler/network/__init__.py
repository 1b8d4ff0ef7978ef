"""
dhtcrawler Network Module - DHT engine adapters.

Provides the engine interface crawl sessions drive and a Mainline DHT
(KRPC over UDP) implementation of it.
"""

from dhtcrawler.network.peer import (
    NODE_ID_SIZE,
    PeerAddress,
    PeerRecord,
    random_node_id,
    encode_identity,
    decode_identity,
)
from dhtcrawler.network.engine import DHTEngine, EngineError, EngineFactory
from dhtcrawler.network.krpc import KRPCEngine, create_engine

__all__ = [
    # Peer
    "NODE_ID_SIZE",
    "PeerAddress",
    "PeerRecord",
    "random_node_id",
    "encode_identity",
    "decode_identity",
    # Engine
    "DHTEngine",
    "EngineError",
    "EngineFactory",
    "KRPCEngine",
    "create_engine",
]
