"""TypedDict models for persisted records."""

from typing import TypedDict


class BackupRecord(TypedDict):
    filename: str
    timestamp: str  # ISO 8601, UTC
    size: int  # bytes


class InternalLogEntry(TypedDict):
    timestamp: str  # ISO 8601, UTC
    severity: str  # info | warning | error
    message: str


class QuotaState(TypedDict):
    day: str  # local ISO date the counter belongs to
    sent: int
