"""Asynchronous call log query dispatcher."""

__version__ = "0.1.0"
