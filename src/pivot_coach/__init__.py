"""Pivot Coach - real-time sales call coaching with local RAG."""

__version__ = "0.1.0"
