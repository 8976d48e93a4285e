"""Luminaire Solar API – chat assistant service."""

__version__ = "1.0.0"
