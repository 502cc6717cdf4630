"""Rewind - record browser interactions once, replay them on a changed page."""

__version__ = "0.1.0"
