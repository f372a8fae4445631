"""Voice session service with asynchronous conversation audio archival."""

__version__ = "0.1.0"
