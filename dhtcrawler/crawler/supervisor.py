"""
Supervisor - the process-level crawl loop.

Ticks the controller every few seconds (backing off after a failed
admission) until an interrupt is raised, then waits for every running
session to drain. The exit code reports whether the node limit was reached.
"""

import signal
import time
from typing import Optional

from dhtcrawler.core.config import CrawlerConfig
from dhtcrawler.crawler.controller import CrawlController, TickResult
from dhtcrawler.crawler.state import ControllerState, Interrupt
from dhtcrawler.geo import GeoLocator
from dhtcrawler.network.engine import EngineFactory
from dhtcrawler.utils.logger import get_logger

logger = get_logger("supervisor")


TICK_INTERVAL = 5.0  # seconds between controller inspections
BACKOFF_INTERVAL = 30.0  # seconds to wait after a failed admission
DRAIN_POLL = 1.0  # seconds between running-count checks on shutdown
SIGNAL_POLL = 0.5  # seconds between checks for a caught signal

EXIT_LIMIT_REACHED = 0
EXIT_FAILURE = 1


def exit_code(state: ControllerState) -> int:
    """0 if a session reached the node limit, 1 for any other shutdown."""
    return EXIT_LIMIT_REACHED if state.interrupt is Interrupt.LIMIT_REACHED else EXIT_FAILURE


class SignalFlag:
    """
    Records the last shutdown signal received.

    The handler only assigns an attribute and takes no locks; it may run
    while the main thread holds the controller state lock.
    """

    def __init__(self):
        self.signum: Optional[int] = None

    def __call__(self, signum, frame) -> None:
        self.signum = signum

    @property
    def raised(self) -> bool:
        return self.signum is not None


def install_signal_handlers() -> SignalFlag:
    """Route SIGINT / SIGTERM to a flag polled by the supervisor loop."""
    flag = SignalFlag()
    signal.signal(signal.SIGINT, flag)
    signal.signal(signal.SIGTERM, flag)
    return flag


def _stop_if_signalled(controller: CrawlController, stop_flag: Optional[SignalFlag]) -> None:
    if stop_flag is None or not stop_flag.raised or controller.state.interrupted:
        return
    logger.info(f"Controller - {signal.Signals(stop_flag.signum).name} signal caught, interrupt all crawlers.")
    controller.interrupt()


def _pause(
    controller: CrawlController,
    seconds: float,
    stop_flag: Optional[SignalFlag],
    poll: float = SIGNAL_POLL,
) -> None:
    """Wait ``seconds``, returning early on interrupt or a caught signal."""
    state = controller.state
    deadline = time.monotonic() + seconds
    while True:
        _stop_if_signalled(controller, stop_flag)
        remaining = deadline - time.monotonic()
        if remaining <= 0 or state.wait_interrupt(min(remaining, poll)):
            return


def supervise(
    controller: CrawlController,
    tick_interval: float = TICK_INTERVAL,
    backoff_interval: float = BACKOFF_INTERVAL,
    drain_poll: float = DRAIN_POLL,
    stop_flag: Optional[SignalFlag] = None,
) -> int:
    """
    Drive ``controller`` until interrupted, then drain running sessions.

    Args:
        controller: Controller to tick
        tick_interval: Seconds between inspections
        backoff_interval: Seconds to wait after a failed admission
        drain_poll: Seconds between running-count checks on shutdown
        stop_flag: Set by signal handlers; turned into a STOP interrupt here

    Returns:
        Process exit code
    """
    state = controller.state
    _stop_if_signalled(controller, stop_flag)
    while not state.interrupted:
        result = controller.tick()
        _pause(controller, backoff_interval if result is TickResult.FAILED else tick_interval, stop_flag)

    logger.info(f"Controller - shutting down, waiting for {state.running} crawlers.")
    while not state.wait_idle(drain_poll):
        logger.debug(f"Controller - {state.running} crawlers still running.")

    return exit_code(state)


def run_crawler(
    config: CrawlerConfig,
    engine_factory: Optional[EngineFactory] = None,
    handle_signals: bool = True,
    tick_interval: float = TICK_INTERVAL,
    backoff_interval: float = BACKOFF_INTERVAL,
) -> int:
    """
    Run the crawler with ``config`` until interrupted or the node limit is hit.

    Args:
        config: Loaded configuration
        engine_factory: Engine constructor (KRPC engine by default)
        handle_signals: Install SIGINT/SIGTERM handlers (main thread only)
        tick_interval: Seconds between controller inspections
        backoff_interval: Seconds to wait after a failed admission

    Returns:
        Process exit code
    """
    geo = GeoLocator.open(config.database)
    controller = CrawlController(config, engine_factory=engine_factory, geo=geo)

    stop_flag = None
    if handle_signals:
        stop_flag = install_signal_handlers()

    try:
        return supervise(controller, tick_interval, backoff_interval, stop_flag=stop_flag)
    finally:
        geo.close()
