"""ScholarFeed: live scholarship listing aggregator."""

__version__ = "0.1.0"
