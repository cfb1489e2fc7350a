"""Scheduled bookmark archiver driven by an external AI agent."""

__version__ = "0.3.0"
