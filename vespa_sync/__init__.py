"""Data sync, tiered caching and notification aggregation for the student homepage."""

__version__ = "0.1.0"
