"""Shared helpers: logging setup and exchange-calendar dates."""
