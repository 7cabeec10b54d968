"""Latency benchmark for competing real-time blockchain data feeds."""

__version__ = "0.3.0"
