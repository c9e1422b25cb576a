"""Message ingestion, automation and broadcast core for customer support."""

from .__version__ import __version__

__all__ = ["__version__"]
