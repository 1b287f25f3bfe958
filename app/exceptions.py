"""Exception hierarchy for the metadata sync engine."""


class SyncError(Exception):
    """Base exception for all sync errors."""


# Fatal: the sync for the series is aborted and reported to the caller.
class NotFoundError(SyncError):
    """Raised when a series or season cannot be located locally or upstream."""


class AnchorMissingError(SyncError):
    """Raised when the upstream series has no season 1."""


# Recovered locally: logged, the sync continues with a degraded result.
class ExternalFetchError(SyncError):
    """Raised on poster download or catalog search network failures."""


class ParseError(SyncError):
    """Raised when a serialized title or genre list is malformed."""
