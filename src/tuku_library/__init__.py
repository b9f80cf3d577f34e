"""Tuku library - music library ingestion and persistence for the Tuku player."""

__version__ = "0.1.0"
