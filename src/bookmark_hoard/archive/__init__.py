"""Markdown archive scanning and backups."""
