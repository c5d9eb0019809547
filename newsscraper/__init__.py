"""
RSS news scraping pipeline: jobs, per-source extraction and persistence.
"""

__version__ = "0.1.0"
