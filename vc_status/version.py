"""Version information for vc-status."""

__version__ = "0.3.0"
