"""
Shared fixtures: a scripted in-memory DHT engine and a manual clock.
"""

import pytest

from dhtcrawler.core.config import BootstrapNode, CrawlerConfig
from dhtcrawler.network.engine import DHTEngine, EngineError
from dhtcrawler.network.peer import NODE_ID_SIZE, PeerAddress


BOOTSTRAP_KEY = "ab" * NODE_ID_SIZE


class FakeClock:
    """Monotonic clock advanced by hand (or by ``sleep``)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.advance(seconds)


class FakeEngine(DHTEngine):
    """
    Engine that reports scripted peers.

    ``script`` is a list of batches; each ``iterate()`` call delivers the
    next batch through the discovery callback. With ``connect_on`` set, the
    engine reports itself connected from that iteration on.
    """

    def __init__(self, script=None, interval: float = 1.0, fail_hosts=(), connect_on=None):
        super().__init__()
        self.script = [list(batch) for batch in (script or [])]
        self.interval = interval
        self.fail_hosts = set(fail_hosts)
        self.connect_on = connect_on
        self.bootstraps = []
        self.queries = []
        self.iterations = 0
        self.closed = False

    @property
    def node_id(self) -> bytes:
        return b"\xee" * NODE_ID_SIZE

    def bootstrap(self, host, port, identity):
        if host in self.fail_hosts:
            raise EngineError(f"cannot send to {host}")
        self.bootstraps.append((host, port, identity))

    def iterate(self):
        self.iterations += 1
        if self.iterations == self.connect_on:
            self._connected = True
        if self.script:
            for address, identity in self.script.pop(0):
                self._discovered(address, identity)

    def iteration_interval(self):
        return self.interval

    def get_nodes(self, address, identity, target):
        self.queries.append((address, identity, target))

    def close(self):
        self.closed = True


def make_peer(n: int):
    """Deterministic (address, identity) pair number ``n``."""
    return PeerAddress(f"10.0.{n // 256}.{n % 256}", 6881), bytes([n % 256]) * NODE_ID_SIZE


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def peer():
    return make_peer


@pytest.fixture
def make_config(tmp_path):
    """Build a CrawlerConfig writing into a temporary data dir."""
    def _make(**overrides):
        values = dict(
            interval=0,
            max_crawlers=1,
            timeout=5,
            request_interval=0,
            requests_per_interval=4,
            random_requests=0,
            initial_nodes_list_size=4,
            bootstraps=[BootstrapNode(ipv4="10.1.1.1", port=6881, key=BOOTSTRAP_KEY)],
            data_dir=tmp_path / "data",
        )
        values.update(overrides)
        return CrawlerConfig(**values)
    return _make


@pytest.fixture
def fake_engine():
    return FakeEngine
