"""
Ben-Or Randomized Binary Consensus with asyncio.

This package implements a single participant of the round-based, two-phase
binary consensus protocol described by Michael Ben-Or in "Another Advantage
of Free Choice: Completely Asynchronous Agreement Protocols".
"""

__version__ = "0.1.0"
