"""MuleTracker: Anypoint Platform application activity monitor."""

__version__ = "0.3.0"
