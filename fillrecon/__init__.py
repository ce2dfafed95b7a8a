"""Order-fill reconciliation engine for a live trading dashboard."""

__version__ = "0.1.0"
