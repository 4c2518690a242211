"""Console log relay: tails a log store and forwards entries to Discord."""

__version__ = "0.1.0"
