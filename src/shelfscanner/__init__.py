"""ShelfScanner - book metadata cache and API quota service."""

__version__ = "0.1.0"
