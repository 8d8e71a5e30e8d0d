"""Manage Wine/Proton prefixes and apply winetricks-style verbs to them."""

__version__ = "0.4.0"
