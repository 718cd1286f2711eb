"""Net worth aggregation engine: snapshots, history and provider refresh."""

__version__ = "0.1.0"
