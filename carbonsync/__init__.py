"""CarbonSync: carbon credit marketplace API."""

__version__ = "0.2.0"
