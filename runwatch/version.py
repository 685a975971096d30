"""Version information for Runwatch."""

__version__ = "0.1.0"
