"""PRIZMA - Bulgarian receipt parsing and price comparison backend."""

__version__ = "1.0.0"
