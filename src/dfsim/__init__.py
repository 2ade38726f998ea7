"""Lineup optimization and correlated outcome simulation for DFS contests."""

__version__ = "0.1.0"
