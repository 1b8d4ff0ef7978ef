"""
Unit tests for the crawl session state machine.

Tests cover:
1. Bootstrap handling of good, malformed and failing seeds
2. Discovery callback dedup and node limit
3. Query pacing and the send cursor
4. Termination (interrupt, node limit, stall) and finalization
"""

import logging
import random

import pytest

from dhtcrawler.core.config import BootstrapNode
from dhtcrawler.crawler.session import CrawlSession, TerminationReason
from dhtcrawler.crawler.state import ControllerState, Interrupt
from dhtcrawler.geo import GeoLocator
from dhtcrawler.network.engine import EngineError
from dhtcrawler.utils.logger import VERBOSE

BOOTSTRAP_KEY = "ab" * 20


@pytest.fixture
def state(clock):
    return ControllerState(clock=clock)


@pytest.fixture
def new_session(make_config, state, clock, fake_engine):
    """Create a session around a FakeEngine; returns (session, engine)."""
    def _new(engine=None, config=None, **kwargs):
        engine = engine or fake_engine()
        config = config or make_config()
        session = CrawlSession(
            config, state, engine, clock=clock, sleep=clock.sleep, **kwargs
        )
        return session, engine
    return _new


def output_files(config):
    return sorted(config.data_dir.rglob("*.lst")) if config.data_dir.exists() else []


# =============================================================================
# Bootstrap
# =============================================================================


class TestBootstrap:
    """Tests for session admission and seed queries."""

    def test_initial_state(self, new_session, clock):
        """A new session has an empty frontier and all stamps at creation."""
        session, _ = new_session()
        assert len(session.frontier) == 0
        assert session.frontier.send_ptr == 0
        assert session.started == session.last_new_node == session.last_request == clock.now
        assert session.index == 1

    def test_indexes_increase(self, new_session):
        first, _ = new_session()
        second, _ = new_session()
        assert second.index == first.index + 1

    def test_one_query_per_seed_address(self, new_session, make_config):
        """Each configured ipv4/ipv6 address gets one bootstrap query."""
        config = make_config(bootstraps=[
            BootstrapNode(ipv4="10.1.1.1", ipv6="2001:db8::1", port=6881, key=BOOTSTRAP_KEY),
            BootstrapNode(ipv4="10.1.1.2", port=6882, key=BOOTSTRAP_KEY),
        ])
        _, engine = new_session(config=config)

        identity = bytes.fromhex(BOOTSTRAP_KEY)
        assert engine.bootstraps == [
            ("10.1.1.1", 6881, identity),
            ("2001:db8::1", 6881, identity),
            ("10.1.1.2", 6882, identity),
        ]

    def test_malformed_key_skipped(self, new_session, make_config):
        """Seeds with undecodable keys are skipped, not fatal."""
        config = make_config(bootstraps=[
            BootstrapNode(ipv4="10.1.1.1", port=6881, key="not-hex"),
            BootstrapNode(ipv4="10.1.1.2", port=6881, key="abcd"),
            BootstrapNode(ipv4="10.1.1.3", port=6881, key=BOOTSTRAP_KEY),
        ])
        _, engine = new_session(config=config)
        assert [b[0] for b in engine.bootstraps] == ["10.1.1.3"]

    def test_send_failure_continues(self, new_session, make_config, fake_engine):
        """A failing bootstrap send does not stop the remaining seeds."""
        config = make_config(bootstraps=[
            BootstrapNode(ipv4="10.1.1.1", port=6881, key=BOOTSTRAP_KEY),
            BootstrapNode(ipv4="10.1.1.2", port=6881, key=BOOTSTRAP_KEY),
        ])
        engine = fake_engine(fail_hosts={"10.1.1.1"})
        session, _ = new_session(engine=engine, config=config)

        assert [b[0] for b in engine.bootstraps] == ["10.1.1.2"]
        assert session.bootstrap() == 1


# =============================================================================
# Discovery
# =============================================================================


class TestDiscovery:
    """Tests for the engine discovery callback."""

    def test_appends_new_peer(self, new_session, peer, clock):
        session, _ = new_session()
        clock.advance(3)
        session.on_discovered(*peer(1))

        assert len(session.frontier) == 1
        assert session.last_new_node == clock.now

    def test_known_identity_ignored(self, new_session, peer, clock):
        """A repeated identity neither grows the frontier nor refreshes the stamp."""
        session, _ = new_session()
        session.on_discovered(*peer(1))
        stamp = session.last_new_node

        clock.advance(3)
        session.on_discovered(*peer(1))

        assert len(session.frontier) == 1
        assert session.last_new_node == stamp

    def test_stops_growing_at_node_limit(self, new_session, make_config, peer):
        """Peers beyond the node limit are not recorded."""
        session, _ = new_session(config=make_config(node_limit=3))
        for n in range(1, 6):
            session.on_discovered(*peer(n))
        assert len(session.frontier) == 3

    def test_callback_wired_to_engine(self, new_session, fake_engine, peer):
        """Peers reported during iterate() land in the frontier in order."""
        engine = fake_engine(script=[[peer(1), peer(2)], [peer(3)]])
        session, _ = new_session(engine=engine)
        engine.iterate()
        engine.iterate()
        assert [r.identity for r in session.frontier] == [peer(n)[1] for n in (1, 2, 3)]

    def test_verbose_log_line(self, new_session, peer, caplog):
        """At verbose level each new peer is logged with its location."""

        class StubGeo:
            def lookup(self, ip):
                return "Iceland, , Reykjavik"

        session, _ = new_session(geo=StubGeo())
        caplog.set_level(VERBOSE, logger="dhtcrawler")
        address, identity = peer(7)
        session.on_discovered(address, identity)

        line = f"Crawler[{session.index}] - {identity.hex()}, {address.host}, Iceland, , Reykjavik - 1"
        assert line in caplog.text


# =============================================================================
# Query dispatch
# =============================================================================


class TestSendNodeRequests:
    """Tests for paced find_node dispatch."""

    def test_rate_limited(self, new_session, make_config, peer, clock):
        """Nothing is sent until request_interval has elapsed."""
        session, engine = new_session(config=make_config(request_interval=2))
        session.on_discovered(*peer(1))

        assert session.send_node_requests() == 0
        clock.advance(1)
        assert session.send_node_requests() == 0
        assert engine.queries == []

        clock.advance(1)
        assert session.send_node_requests() == 1
        assert session.last_request == clock.now

    def test_cursor_advance_rule(self, new_session, peer):
        """send_ptr becomes min(previous + per-round count, len(frontier))."""
        session, _ = new_session()  # requests_per_interval = 4
        for n in range(1, 11):
            session.on_discovered(*peer(n))

        counts = []
        pointers = []
        for _ in range(4):
            before = session.frontier.send_ptr
            counts.append(session.send_node_requests())
            pointers.append(session.frontier.send_ptr)
            assert session.frontier.send_ptr == min(before + 4, len(session.frontier))

        assert counts == [4, 4, 2, 0]
        assert pointers == [4, 8, 10, 10]

    def test_self_query_targets(self, new_session, peer):
        """Each peer is asked about its own identity."""
        session, engine = new_session()
        session.on_discovered(*peer(1))
        session.on_discovered(*peer(2))
        session.send_node_requests()

        assert [(q[0], q[2]) for q in engine.queries] == [
            (peer(1)[0], peer(1)[1]),
            (peer(2)[0], peer(2)[1]),
        ]

    def test_random_probes(self, new_session, make_config, peer):
        """random_requests extra queries go to the same peer about known identities."""
        session, engine = new_session(
            config=make_config(random_requests=2), rng=random.Random(42)
        )
        for n in range(1, 4):
            session.on_discovered(*peer(n))

        assert session.send_node_requests() == 3
        assert len(engine.queries) == 3 * 3

        known = {r.identity for r in session.frontier}
        for i in range(3):
            batch = engine.queries[i * 3:(i + 1) * 3]
            address, identity = peer(i + 1)
            assert batch[0] == (address, identity, identity)
            for probe in batch[1:]:
                assert probe[0] == address
                assert probe[2] in known

    def test_empty_frontier(self, new_session):
        session, engine = new_session()
        assert session.send_node_requests() == 0
        assert engine.queries == []


# =============================================================================
# Termination and finalization
# =============================================================================


class TestLifecycle:
    """Tests for the stepping loop, termination and dumps."""

    def test_node_limit_scenario(self, new_session, make_config, fake_engine, peer, state):
        """Reaching the limit stops the session, flags LIMIT_REACHED and still dumps."""
        config = make_config(node_limit=3)
        engine = fake_engine(script=[[], [peer(1), peer(2), peer(3)]])
        session, _ = new_session(engine=engine, config=config)

        assert session.run() is TerminationReason.LIMIT_REACHED
        assert state.interrupt is Interrupt.LIMIT_REACHED
        assert [r.identity for r in session.frontier] == [peer(n)[1] for n in (1, 2, 3)]

        files = output_files(config)
        assert files == [session.output_path]
        lines = files[0].read_text().splitlines()
        assert len(lines) == 3
        assert [line.split(", ")[0] for line in lines] == [peer(n)[1].hex() for n in (1, 2, 3)]
        assert engine.closed

    def test_graceful_stop_writes_nothing(self, new_session, make_config, fake_engine, peer, state):
        """An interrupt mid-run ends the session without any output."""
        config = make_config()
        engine = fake_engine(script=[[peer(1), peer(2)], [peer(3)]])

        def sleep(seconds):
            if engine.iterations >= 2:
                state.raise_interrupt(Interrupt.STOP)

        session, _ = new_session(engine=engine, config=config)
        session._sleep = sleep

        assert session.run() is TerminationReason.INTERRUPTED
        assert len(session.frontier) == 3
        assert output_files(config) == []
        assert session.output_path is None
        assert engine.closed

    def test_other_sessions_do_not_dump_after_limit(self, new_session, make_config, peer, state):
        """A session observing another's LIMIT_REACHED stops as interrupted."""
        config = make_config(node_limit=100)
        session, engine = new_session(config=config)
        session.on_discovered(*peer(1))
        state.raise_interrupt(Interrupt.LIMIT_REACHED)

        assert session.run() is TerminationReason.INTERRUPTED
        assert output_files(config) == []

    def test_idle_timeout_scenario(self, new_session, make_config, clock):
        """With no peers reported the session stalls after >= timeout and dumps."""
        config = make_config(timeout=5)
        session, engine = new_session(config=config)

        assert session.run() is TerminationReason.STALLED
        assert clock.now - session.started >= 5
        assert engine.iterations == 5

        files = output_files(config)
        assert len(files) == 1
        assert files[0].read_text() == ""

    def test_pending_peers_prevent_stall(self, new_session, make_config, peer, clock):
        """Stall requires the cursor to have caught up with the frontier."""
        session, _ = new_session(config=make_config(timeout=5))
        session.on_discovered(*peer(1))
        clock.advance(60)

        assert not session.finished()
        session.send_node_requests()
        assert session.finished()
        assert session.reason is TerminationReason.STALLED

    def test_finalize_failure_is_not_fatal(self, new_session, make_config, tmp_path, peer):
        """I/O errors while dumping are logged; the engine is still released."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        config = make_config(data_dir=blocker, timeout=0)
        session, engine = new_session(config=config)

        assert session.run() is TerminationReason.STALLED
        assert session.output_path is None
        assert engine.closed

    def test_unexpected_error_still_tears_down(self, new_session, fake_engine):
        """An engine crash is logged and the session still releases its engine."""
        engine = fake_engine()

        def broken():
            raise EngineError("socket gone")

        engine.iterate = broken
        session, _ = new_session(engine=engine)

        assert session.run() is None
        assert engine.closed
        assert engine._on_discovered is None

    def test_geo_failure_keeps_dump(self, new_session, make_config, peer):
        """A geo database that cannot answer leaves the location column empty."""
        class CountryOnlyReader:
            def city(self, ip):
                raise TypeError("The city method cannot be used with the GeoLite2-Country database")

            def close(self):
                pass

        config = make_config(timeout=0)
        session, _ = new_session(config=config, geo=GeoLocator(CountryOnlyReader()))
        session.on_discovered(*peer(1))
        session.frontier.send_ptr = 1

        assert session.run() is TerminationReason.STALLED
        assert session.output_path.read_text() == f"{peer(1)[1].hex()}, {peer(1)[0].host}, \n"

    def test_connection_status_logged_per_session(self, new_session, make_config, fake_engine, caplog):
        """Connection changes are logged once, tagged with the session index."""
        engine = fake_engine(connect_on=2)
        session, _ = new_session(engine=engine, config=make_config(timeout=5))

        with caplog.at_level(logging.INFO, logger="dhtcrawler.crawler"):
            assert session.run() is TerminationReason.STALLED

        status = [r.getMessage() for r in caplog.records if "connection status" in r.getMessage()]
        assert status == [
            f"Crawler[{session.index}] - connection status: Connected/UDP",
            f"Crawler[{session.index}] - connection status: Disconnected",
        ]
