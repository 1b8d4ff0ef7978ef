"""
Geo enrichment for discovered peers.
"""

from dhtcrawler.geo.locator import GeoLocator

__all__ = ["GeoLocator"]
