"""Conversation segmentation for chat activity summaries."""

__version__ = "0.1.0"
