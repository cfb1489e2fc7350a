"""Idempotent retry state machine over links found in the archive."""

from bookmark_hoard.reprocess.models import (
    CurrentJob,
    ReprocessEntry,
    ReprocessState,
    ReprocessStats,
    ReprocessStatus,
)
from bookmark_hoard.reprocess.store import ReprocessStore

__all__ = [
    "CurrentJob",
    "ReprocessEntry",
    "ReprocessState",
    "ReprocessStats",
    "ReprocessStatus",
    "ReprocessStore",
]
