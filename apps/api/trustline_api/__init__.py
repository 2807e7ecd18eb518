"""Trustline: platform trust and investigation service."""

__version__ = "0.1.0"
