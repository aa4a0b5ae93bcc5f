"""
efhub - eFootball tournament backend.

Tournament lifecycle, fixture generation, result verification, standings,
leaderboards and entry-fee payments on top of a relational store.
"""

__version__ = "1.0.0"
