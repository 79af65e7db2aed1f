"""Bulk loader for subscriber billing records (MSISDN + prepaid flag)."""

__version__ = "1.0.0"
