"""Linkshelf link metadata enrichment service"""

__version__ = "1.0.0"
