"""Fallback orchestrator for the video editor's speech-to-text backends."""

__version__ = "0.1.0"
