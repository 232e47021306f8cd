"""Autonomous software-delivery workflow core."""

__version__ = "0.1.0"
