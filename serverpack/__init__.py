"""Modpack server builder: catalog client, integrity checks and archive transform."""

__version__ = "1.0.0"
