"""Wipe-to-certificate fulfilment gateway in front of the CertiWipe engine."""

__version__ = "1.0.0"
