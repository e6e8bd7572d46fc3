"""
Indexing submission and search result ranking.
"""
