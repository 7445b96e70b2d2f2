"""Scrape a legacy PHP time tracker and mirror its data in a local store."""

__version__ = "0.3.0"
