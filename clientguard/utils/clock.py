"""Naive UTC timestamps, matching how the store persists DateTime columns"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
