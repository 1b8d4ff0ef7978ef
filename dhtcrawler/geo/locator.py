"""
Geo enrichment - coarse location lookup for peer IP addresses.

Backed by a MaxMind GeoIP2/GeoLite2 City database. The reader is shared by
every crawl session, so queries are serialized behind a single lock. When no
database is configured (or it cannot be opened) lookups return an empty
string and the feature is silently disabled.
"""

import threading
from pathlib import Path
from typing import Optional, Union

import geoip2.database
import geoip2.errors
import maxminddb

from dhtcrawler.utils.logger import get_logger

logger = get_logger("geo")


class GeoLocator:
    """Thread-safe IP -> "country, region, city" lookup."""

    def __init__(self, reader: Optional[geoip2.database.Reader] = None):
        self._reader = reader
        self._lock = threading.Lock()
        self._warned = False

    @classmethod
    def open(cls, database: Optional[Union[str, Path]]) -> "GeoLocator":
        """
        Open the database at ``database``.

        Returns a disabled locator when no path is given or opening fails.
        """
        if not database:
            logger.warning("No geo database configured, location lookup disabled.")
            return cls()

        try:
            reader = geoip2.database.Reader(str(database))
        except (OSError, ValueError, maxminddb.InvalidDatabaseError) as e:
            logger.warning(f"Open geo database {database} failed, check config file: {e}")
            return cls()

        logger.info(f"Geo database loaded: {database}")
        return cls(reader)

    @property
    def enabled(self) -> bool:
        return self._reader is not None

    def lookup(self, ip: str) -> str:
        """Resolve ``ip`` to a location string, or "" if unknown."""
        if self._reader is None:
            return ""

        try:
            with self._lock:
                record = self._reader.city(ip)
        except geoip2.errors.AddressNotFoundError:
            return ""
        except ValueError:
            # not an IP address
            return ""
        except (TypeError, maxminddb.InvalidDatabaseError, geoip2.errors.GeoIP2Error) as e:
            # TypeError: database type without city records
            if not self._warned:
                self._warned = True
                logger.warning(f"Geo lookup failed, locations will be empty: {e}")
            return ""

        return ", ".join((
            record.country.name or "",
            record.subdivisions.most_specific.name or "",
            record.city.name or "",
        ))

    def close(self) -> None:
        with self._lock:
            if self._reader is not None:
                self._reader.close()
                self._reader = None
