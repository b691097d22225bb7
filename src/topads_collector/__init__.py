"""Authenticated top-ads collection for the TikTok Creative Center."""

__version__ = "0.3.0"
