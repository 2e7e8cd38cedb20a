# src/purposeful_day/__init__.py

"""Purposeful Day: activity timer run on a handheld peer and mirrored on a wrist peer."""

__version__ = "0.1.0"
