"""Offline-first photo library that syncs with a single Google Drive folder."""

__version__ = "0.1.0"
