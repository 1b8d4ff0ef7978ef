"""
Crawler Module - crawl sessions and the controller that admits them.
"""

from dhtcrawler.crawler.state import ControllerState, Interrupt
from dhtcrawler.crawler.frontier import Frontier
from dhtcrawler.crawler.output import (
    data_filename,
    format_record,
    atomic_write,
    dump_records,
)
from dhtcrawler.crawler.session import CrawlSession, TerminationReason
from dhtcrawler.crawler.controller import CrawlController, TickResult
from dhtcrawler.crawler.supervisor import (
    SignalFlag,
    install_signal_handlers,
    run_crawler,
    supervise,
    exit_code,
)

__all__ = [
    # State
    "ControllerState",
    "Interrupt",
    # Frontier
    "Frontier",
    # Output
    "data_filename",
    "format_record",
    "atomic_write",
    "dump_records",
    # Session
    "CrawlSession",
    "TerminationReason",
    # Controller
    "CrawlController",
    "TickResult",
    # Supervisor
    "SignalFlag",
    "install_signal_handlers",
    "run_crawler",
    "supervise",
    "exit_code",
]
