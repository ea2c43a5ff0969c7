"""Error taxonomy for the station core.

Every failure in a check, backup or dispatch ends as an internal log entry
and, where relevant, a warning. These exceptions carry the failure between
layers; none of them is allowed to escape a tick.
"""


class StationError(Exception):
    """Base class for all station failures."""


class TransportError(StationError):
    """Network failure, timeout or non-2xx response on a probe, download or dispatch."""


class PersistenceError(StationError):
    """A structured document or log could not be read or written."""


class QuotaExceeded(StationError):
    """The daily warning quota is used up. A suppression signal, not a failure."""


class BackupError(StationError):
    """A backup run could not complete."""


class BackupBusy(BackupError):
    """A backup for the same source is already in flight."""


class VersioningExhausted(BackupError):
    """No free versioned filename was found within the attempt bound."""


class RotationError(StationError):
    """Deleting an evicted backup file failed; the record was kept."""


class UnknownSourceError(StationError):
    """No backup source is configured under the given description."""


class RestoreError(StationError):
    """A stored backup could not be uploaded to the restore route."""
