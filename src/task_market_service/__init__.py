"""Task lifecycle and transaction engine for the task marketplace."""

__version__ = "0.1.0"
