"""
Crawl Session - one bounded exploration run of the DHT.

Lifecycle:
1. Created with a fresh engine; bootstraps through every configured seed peer
2. Steps the engine, recording each newly reported peer in its frontier
3. Paces find_node queries: each frontier peer is asked about itself, plus
   a few randomized probes about other known peers
4. Stops on global interrupt, on reaching the node limit, or once the
   frontier is exhausted and nothing new arrived within the idle timeout
5. Dumps the frontier (unless interrupted) and releases the engine

Everything here runs on the session's own thread: the engine fires the
discovery callback synchronously from ``iterate()``.
"""

import random
import time
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from dhtcrawler.core.config import CrawlerConfig
from dhtcrawler.crawler.frontier import Frontier
from dhtcrawler.crawler.output import dump_records
from dhtcrawler.crawler.state import ControllerState, Interrupt
from dhtcrawler.geo import GeoLocator
from dhtcrawler.network.engine import DHTEngine, EngineError
from dhtcrawler.network.peer import PeerAddress, decode_identity, encode_identity
from dhtcrawler.utils.logger import VERBOSE, get_logger

logger = get_logger("crawler")


class TerminationReason(Enum):
    """Why a session stopped."""
    INTERRUPTED = "interrupted"
    STALLED = "stalled"
    LIMIT_REACHED = "limit_reached"


class CrawlSession:
    """
    A single crawler instance.

    Args:
        config: Process configuration
        state: Shared controller state
        engine: DHT engine owned by this session
        geo: Location lookup (disabled if omitted)
        clock: Monotonic time source for pacing and timeouts
        sleep: Sleep function used between engine iterations
        rng: Random source for probe targets
    """

    def __init__(
        self,
        config: CrawlerConfig,
        state: ControllerState,
        engine: DHTEngine,
        geo: Optional[GeoLocator] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.state = state
        self.engine = engine
        self.geo = geo or GeoLocator()
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()

        self.index = state.next_index()
        self.frontier = Frontier(config.initial_nodes_list_size)
        self.stamp = datetime.now()
        now = clock()
        self.started = now
        self.last_new_node = now
        self.last_request = now
        self.reason: Optional[TerminationReason] = None
        self.output_path: Optional[Path] = None
        self._connected = False

        engine.set_discovery_callback(self.on_discovered)
        self.bootstrap()

    @property
    def node_limit(self) -> Optional[int]:
        return self.config.node_limit

    def bootstrap(self) -> int:
        """
        Send one bootstrap query per configured seed address.

        Seeds with malformed keys are skipped; send failures are logged.

        Returns:
            Number of bootstrap queries sent
        """
        sent = 0
        for node in self.config.bootstraps:
            try:
                identity = decode_identity(node.key)
            except ValueError as e:
                logger.warning(f"Crawler[{self.index}] - skip bootstrap node with bad key {node.key!r}: {e}")
                continue

            for host in (node.ipv4, node.ipv6):
                if not host:
                    continue
                try:
                    self.engine.bootstrap(host, node.port, identity)
                    sent += 1
                except EngineError as e:
                    logger.warning(f"Crawler[{self.index}] - failed to bootstrap DHT via: {host} {node.port} ({e})")
        return sent

    # =========================================================================
    # Discovery
    # =========================================================================

    def on_discovered(self, address: PeerAddress, identity: bytes) -> None:
        """Engine callback: record a peer reported in a find_node response."""
        if identity in self.frontier:
            return
        if self.node_limit is not None and len(self.frontier) >= self.node_limit:
            return
        if not self.frontier.add(address, identity):
            return

        self.last_new_node = self._clock()

        if logger.isEnabledFor(VERBOSE):
            location = self.geo.lookup(address.host)
            logger.log(
                VERBOSE,
                f"Crawler[{self.index}] - {encode_identity(identity)}, {address}, {location} - {len(self.frontier)}",
            )

    def send_node_requests(self) -> int:
        """
        Query up to ``requests_per_interval`` peers that have not been queried.

        Each peer is asked about its own id, then ``random_requests`` times
        about the id of a random frontier peer.

        Returns:
            Number of peers queried (0 if rate-limited or nothing pending)
        """
        now = self._clock()
        if now - self.last_request < self.config.request_interval:
            return 0

        frontier = self.frontier
        count = 0
        i = frontier.send_ptr
        while count < self.config.requests_per_interval and i < len(frontier):
            record = frontier[i]
            self.engine.get_nodes(record.address, record.identity, record.identity)

            for _ in range(self.config.random_requests):
                target = frontier[self._rng.randrange(len(frontier))]
                self.engine.get_nodes(record.address, record.identity, target.identity)

            count += 1
            i += 1

        frontier.send_ptr = i
        self.last_request = now
        return count

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _report_connection(self) -> None:
        if self.engine.connected and not self._connected:
            self._connected = True
            logger.info(f"Crawler[{self.index}] - connection status: Connected/UDP")

    def finished(self) -> bool:
        """
        Check whether the session should stop, recording the reason.

        A session reaching the node limit raises the LIMIT_REACHED interrupt.
        """
        if self.state.interrupted:
            self.reason = TerminationReason.INTERRUPTED
            return True

        if self.node_limit is not None and len(self.frontier) >= self.node_limit:
            self.state.raise_interrupt(Interrupt.LIMIT_REACHED)
            self.reason = TerminationReason.LIMIT_REACHED
            return True

        if self.frontier.exhausted and self.last_new_node + self.config.timeout <= self._clock():
            self.reason = TerminationReason.STALLED
            return True

        return False

    def run(self) -> Optional[TerminationReason]:
        """
        Step the engine until finished, then dump and tear down.

        Returns:
            Why the session stopped, or None if it failed unexpectedly
        """
        logger.info(f"Crawler[{self.index}] - created and running.")
        try:
            while not self.finished():
                self.engine.iterate()
                self._report_connection()
                self.send_node_requests()
                self._sleep(self.engine.iteration_interval())

            logger.info(f"Crawler[{self.index}] - discovered {len(self.frontier)} nodes.")

            if self.reason is not TerminationReason.INTERRUPTED:
                self.finalize()
        except Exception:
            logger.exception(f"Crawler[{self.index}] - aborted by unexpected error")
        finally:
            self.close()

        return self.reason

    def finalize(self) -> Optional[Path]:
        """
        Dump the frontier to the data directory.

        Returns:
            Path written, or None if writing failed
        """
        logger.info(f"Crawler[{self.index}] - dumping nodes list...")
        try:
            path = dump_records(self.config.data_dir, self.stamp, self.frontier, self.geo.lookup)
        except OSError as e:
            logger.error(f"Crawler[{self.index}] - dumping nodes list failed: {e}")
            return None

        logger.debug(f"Crawler[{self.index}] - node list filename: {path}")
        logger.info(f"Crawler[{self.index}] - dumping nodes list success")
        self.output_path = path
        return path

    def close(self) -> None:
        """Release the engine."""
        self.engine.set_discovery_callback(None)
        self.engine.close()
        if self._connected:
            self._connected = False
            logger.info(f"Crawler[{self.index}] - connection status: Disconnected")
