"""
Core configuration for dhtcrawler.
"""

from dhtcrawler.core.config import BootstrapNode, ConfigError, CrawlerConfig, load_config

__all__ = ["BootstrapNode", "ConfigError", "CrawlerConfig", "load_config"]
