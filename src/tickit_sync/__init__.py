"""tickit-sync - self-hosted sync server for tickit task data."""

__version__ = "0.1.0"

__all__ = ["__version__"]
