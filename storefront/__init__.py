"""Storefront backend: Fourthwall webhook intake and ecommerce analytics."""

__version__ = "0.1.0"
