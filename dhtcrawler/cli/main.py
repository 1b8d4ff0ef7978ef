"""
dhtcrawler CLI - command line entry point.

    dhtcrawler --config crawler.toml [--verbose LEVEL] [-l NODE_LIMIT] [--debug]

Exits 0 when a crawler reached the node limit, 1 on any other shutdown.
"""

import os

import click

from dhtcrawler import __version__
from dhtcrawler.core.config import ConfigError, load_config
from dhtcrawler.crawler.supervisor import EXIT_FAILURE, run_crawler
from dhtcrawler.utils.logger import get_logger, setup_logging


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("-c", "--config", "config_file", required=True,
              type=click.Path(dir_okay=False), help="Set config file path.")
@click.option("-v", "--verbose", type=click.IntRange(0, 6), default=None,
              help="Log verbosity (0 fatal .. 6 verbose), overrides config.")
@click.option("-l", "--limit", "node_limit", type=click.IntRange(min=1), default=None,
              help="Stop once a crawler has discovered this many nodes.")
@click.option("--debug", is_flag=True, help="Wait for debugger attach after start.")
@click.version_option(version=__version__)
def cli(config_file, verbose, node_limit, debug):
    """DHT Crawler - discover peers of the Mainline DHT"""
    if debug:
        click.echo(f"Wait for debugger attaching, process id is: {os.getpid()}.")
        click.pause("After debugger attached, press any key to continue......")

    try:
        config = load_config(config_file)
        config = config.with_overrides(log_level=verbose, node_limit=node_limit)
    except (ConfigError, ValueError) as e:
        click.echo(f"loading configure failed: {e}", err=True)
        raise SystemExit(EXIT_FAILURE)

    try:
        setup_logging(config.log_level, str(config.log_file) if config.log_file else None)
    except OSError as e:
        click.echo(f"initializing logging failed: {e}", err=True)
        raise SystemExit(EXIT_FAILURE)

    get_logger("cli").info(f"Crawler starting, data dir {config.data_dir}")
    raise SystemExit(run_crawler(config))


if __name__ == "__main__":
    cli()
