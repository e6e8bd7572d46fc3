"""
SiteSearch

Distributed breadth-first site crawler feeding a full-text search index.
"""

__version__ = "1.0.0"
__description__ = "Distributed BFS crawler with a ranked search endpoint over the pages it indexes"
