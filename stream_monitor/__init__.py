"""
Stream Monitor - Real-time market-data and system-health stream client.

Architecture:
- datafeed/: Push transports, the shared connection manager, consumer adapters,
  and the publisher control API client
- engine/: Bounded state store, envelope dispatch, staleness circuit breaker,
  rate estimation
- ui/: Live dashboard (Textual TUI)
"""

__version__ = "0.1.0"
