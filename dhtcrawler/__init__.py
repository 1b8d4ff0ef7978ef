"""
dhtcrawler - DHT peer discovery crawler

Runs time-boxed crawl sessions against the Mainline DHT:
- Per-session frontier of discovered peers, explored with paced find_node queries
- Controller admitting a bounded number of concurrent sessions
- Atomic node list snapshots with optional geo enrichment
"""

__version__ = "0.1.0"
