"""Text command/response control of serial devices."""

__version__ = "0.1.0"
