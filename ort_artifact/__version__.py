"""Version information for ort-artifact."""

__version__ = "0.1.0"
