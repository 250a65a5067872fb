"""PerpMate funding core: deposit detection, auto-bridging and withdrawals."""

__version__ = "0.1.0"
