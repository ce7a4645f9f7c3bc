"""Sriox Sites - static site hosting control panel."""

__version__ = "1.0.0"
