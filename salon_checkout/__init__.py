"""Checkout and payment reconciliation service for the salon storefront."""

__version__ = "1.0.0"
