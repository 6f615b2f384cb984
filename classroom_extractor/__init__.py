"""Scrape a community classroom into Markdown and download its videos and resources."""

__version__ = "0.1.0"
