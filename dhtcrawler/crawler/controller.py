"""
Crawl Controller - admission policy for crawl sessions.

``tick()`` is called on a fixed cadence by the supervisor. It starts a new
session on its own thread when fewer than ``max_crawlers`` are running and
at least ``interval`` seconds passed since the last admission. Sessions are
never joined; the controller only tracks how many are alive.
"""

import threading
from enum import Enum
from functools import partial
from typing import Optional

from dhtcrawler.core.config import CrawlerConfig
from dhtcrawler.crawler.session import CrawlSession
from dhtcrawler.crawler.state import ControllerState, Interrupt
from dhtcrawler.geo import GeoLocator
from dhtcrawler.network.engine import EngineError, EngineFactory
from dhtcrawler.network.krpc import create_engine
from dhtcrawler.utils.logger import VERBOSE, get_logger

logger = get_logger("controller")


class TickResult(Enum):
    """Outcome of one controller inspection."""
    NO_ACTION = "no_action"
    ADMITTED = "admitted"
    FAILED = "failed"


class CrawlController:
    """
    Starts crawl sessions according to config parameters.

    Args:
        config: Process configuration
        engine_factory: Creates one engine per session (KRPC engine by default)
        geo: Shared location lookup
        state: Shared controller state (created if omitted)
    """

    def __init__(
        self,
        config: CrawlerConfig,
        engine_factory: Optional[EngineFactory] = None,
        geo: Optional[GeoLocator] = None,
        state: Optional[ControllerState] = None,
    ):
        self.config = config
        self.engine_factory = engine_factory or partial(
            create_engine, config.bind_host, config.bind_port
        )
        self.geo = geo or GeoLocator()
        self.state = state or ControllerState()

    @property
    def running(self) -> int:
        return self.state.running

    def tick(self) -> TickResult:
        """
        Admit a new session if policy allows.

        Returns:
            NO_ACTION if no session was needed, ADMITTED if one was started,
            FAILED if engine, session or thread creation failed
        """
        running = self.state.running
        logger.log(VERBOSE, f"Controller - inspection, {running} crawlers running.")

        if (
            self.state.interrupted
            or running >= self.config.max_crawlers
            or not self.state.admission_due(self.config.interval)
        ):
            return TickResult.NO_ACTION

        try:
            engine = self.engine_factory()
        except EngineError as e:
            logger.error(f"Controller - create new crawler failed: {e}")
            return TickResult.FAILED

        try:
            session = self._create_session(engine)
        except Exception:
            logger.exception("Controller - create new crawler failed")
            engine.close()
            return TickResult.FAILED

        self.state.session_started()
        thread = threading.Thread(
            target=self._run_session,
            args=(session,),
            name=f"crawler-{session.index}",
        )
        try:
            thread.start()
        except RuntimeError as e:
            self.state.session_finished()
            session.close()
            logger.error(f"Controller - create new crawler thread failed: {e}")
            return TickResult.FAILED

        self.state.record_admission()
        return TickResult.ADMITTED

    def _create_session(self, engine) -> CrawlSession:
        return CrawlSession(
            self.config,
            self.state,
            engine,
            self.geo,
            clock=self.state.clock,
        )

    def _run_session(self, session: CrawlSession) -> None:
        try:
            session.run()
        finally:
            self.state.session_finished()
            logger.info(f"Crawler[{session.index}] finished and cleaned up.")

    def interrupt(self) -> None:
        """Ask every session to stop without dumping."""
        if self.state.raise_interrupt(Interrupt.STOP):
            logger.info("Controller - interrupt requested, stopping all crawlers.")
