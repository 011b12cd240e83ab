"""WebDAV backup and granular restore engine for Kelivo chat data."""

__version__ = "0.4.0"
