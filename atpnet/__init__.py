"""Reactor-style TCP networking: event loops, timers, thread pools and a TCP server."""

__version__ = "0.1.0"