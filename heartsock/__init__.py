"""Heartsock: real-time heart rate broadcast over WebSockets."""

__version__ = "0.3.0"
