"""PlaceScout backend: points-of-interest aggregation and search."""

__version__ = "0.1.0"
